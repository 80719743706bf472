"""
Event fan-out for committed bids and lifecycle transitions.

Runs after the database commit. A failing publish or notification insert is
logged and dropped; the committed outcome is never reported as failed.
"""
import logging

from django.utils import timezone

from .models import Auction, Bid, Notification
from .serializers import AuctionEventSerializer, BidSerializer
from .store import BidResult, StatusTransition

logger = logging.getLogger(__name__)


class EventFanout:
    def __init__(self, channel, notifier):
        self.channel = channel
        self.notifier = notifier

    def bid_placed(self, commit):
        auction, bid, previous = commit.auction, commit.bid, commit.previous_winner
        self._publish(auction.pk, {
            'type': 'new_bid',
            'auction': AuctionEventSerializer(auction).data,
            'bid': BidSerializer(bid).data,
        })
        self._notify(auction.seller_id, Notification.Type.BID_PLACED, {
            'auction_id': auction.pk,
            'title': 'New Bid Placed',
            'message': f'Someone placed a bid of {bid.amount} on your auction "{auction.title}"',
            'data': {'bid_amount': str(bid.amount), 'bidder_id': bid.bidder_id},
        })
        if previous is not None and previous.bidder_id != bid.bidder_id:
            self._notify(previous.bidder_id, Notification.Type.BID_OUTBID, {
                'auction_id': auction.pk,
                'title': "You've Been Outbid",
                'message': f'Your bid on "{auction.title}" has been outbid',
                'data': {'new_bid_amount': str(bid.amount), 'auction_title': auction.title},
            })

    def auction_started(self, transition):
        auction = transition.auction
        self._publish(auction.pk, {
            'type': 'auction_started',
            'auction': AuctionEventSerializer(auction).data,
        })

    def auction_ended(self, transition):
        auction, winning_bid = transition.auction, transition.winning_bid
        self._publish(auction.pk, {
            'type': 'auction_ended',
            'auction': AuctionEventSerializer(auction).data,
            'winning_bid': BidSerializer(winning_bid).data if winning_bid else None,
            'message': 'Auction has ended',
        })
        if winning_bid is not None:
            self._notify(winning_bid.bidder_id, Notification.Type.AUCTION_WON, {
                'auction_id': auction.pk,
                'title': 'Auction Won!',
                'message': f'Congratulations! You won the auction "{auction.title}"',
                'data': {
                    'auction_title': auction.title,
                    'winning_amount': str(winning_bid.amount),
                    'reserve_met': auction.reserve_met,
                },
            })

    def auction_cancelled(self, transition):
        auction = transition.auction
        self._publish(auction.pk, {
            'type': 'auction_cancelled',
            'auction': AuctionEventSerializer(auction).data,
        })
        for bidder_id in transition.bidder_ids:
            self._notify(bidder_id, Notification.Type.AUCTION_CANCELLED, {
                'auction_id': auction.pk,
                'title': 'Auction Cancelled',
                'message': f'The auction "{auction.title}" has been cancelled',
                'data': {'auction_title': auction.title},
            })

    def auction_ending_soon(self, auction):
        time_left = max((auction.end_time - timezone.now()).total_seconds(), 0)
        self._publish(auction.pk, {
            'type': 'auction_ending_soon',
            'auction_id': auction.pk,
            'time_left': int(time_left),
            'message': 'Auction ending soon!',
        })

    def _publish(self, auction_id, event):
        try:
            self.channel.publish(auction_id, event)
        except Exception:
            logger.exception("Failed to publish %s for auction %s", event.get('type'), auction_id)

    def _notify(self, user_id, type, payload):
        try:
            self.notifier.enqueue(user_id, type, payload)
        except Exception:
            logger.exception("Failed to enqueue %s notification for user %s", type, user_id)


class CeleryFanout:
    """
    Same interface as ``EventFanout``, but delivery runs in a Celery worker.

    Only row ids cross the broker; the worker reloads them and delivers
    through its own ``EventFanout``. Needs a realtime backend that reaches
    across processes (Redis).
    """

    def bid_placed(self, commit):
        previous = commit.previous_winner
        self._send(
            'bid_placed', commit.auction.pk,
            bid_id=commit.bid.pk,
            previous_winner_id=previous.pk if previous is not None else None,
        )

    def auction_started(self, transition):
        self._send('auction_started', transition.auction.pk)

    def auction_ended(self, transition):
        winning_bid = transition.winning_bid
        self._send('auction_ended', transition.auction.pk, bid_id=winning_bid.pk if winning_bid else None)

    def auction_cancelled(self, transition):
        self._send('auction_cancelled', transition.auction.pk, bidder_ids=list(transition.bidder_ids))

    def auction_ending_soon(self, auction):
        self._send('auction_ending_soon', auction.pk)

    def _send(self, kind, auction_id, **refs):
        from .tasks import deliver_fanout

        try:
            deliver_fanout.delay(kind, auction_id, **refs)
        except Exception:
            logger.exception("Failed to dispatch %s for auction %s", kind, auction_id)


def deliver(fanout, kind, auction_id, bid_id=None, previous_winner_id=None, bidder_ids=()):
    """Rebuild a fan-out call from row ids and run it on ``fanout``."""
    auction = Auction.objects.select_related('seller').get(pk=auction_id)
    bid = Bid.objects.filter(pk=bid_id).first() if bid_id else None

    if kind == 'bid_placed':
        previous = Bid.objects.filter(pk=previous_winner_id).first() if previous_winner_id else None
        fanout.bid_placed(BidResult(bid=bid, auction=auction, previous_winner=previous))
    elif kind == 'auction_started':
        fanout.auction_started(StatusTransition(auction=auction, previous_status=Auction.Status.DRAFT))
    elif kind == 'auction_ended':
        fanout.auction_ended(StatusTransition(
            auction=auction, previous_status=Auction.Status.ACTIVE, winning_bid=bid,
        ))
    elif kind == 'auction_cancelled':
        fanout.auction_cancelled(StatusTransition(
            auction=auction, previous_status=auction.status, bidder_ids=tuple(bidder_ids),
        ))
    elif kind == 'auction_ending_soon':
        fanout.auction_ending_soon(auction)
    else:
        raise ValueError(f"Unknown fan-out kind: {kind!r}")
