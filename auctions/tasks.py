from celery import shared_task


@shared_task
def expire_due_auctions():
    """
    End every ACTIVE auction whose deadline has passed and notify its winner.
    Auctions already ended by another observer are skipped.
    """
    from .services import get_lifecycle

    ended = get_lifecycle().expire_due()
    return f"Ended {len(ended)} auctions"


@shared_task
def announce_ending_soon(window_seconds=None):
    """
    Publish an ``auction_ending_soon`` event for auctions about to close.
    """
    from .services import get_lifecycle

    auctions = get_lifecycle().announce_ending_soon(window_seconds)
    return f"Announced {len(auctions)} auctions ending soon"


@shared_task(ignore_result=True)
def deliver_fanout(kind, auction_id, bid_id=None, previous_winner_id=None, bidder_ids=()):
    """
    Publish the events and write the notifications for one committed change.
    Dispatched from the committing request once its transaction is durable.
    """
    from .fanout import deliver
    from .services import get_fanout

    deliver(get_fanout(), kind, auction_id, bid_id, previous_winner_id, bidder_ids)
