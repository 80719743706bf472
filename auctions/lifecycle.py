"""
Auction state machine.

    DRAFT --start--> ACTIVE --end / deadline--> ENDED
      |                 |
      +----cancel-------+----cancel--> CANCELLED

ENDED and CANCELLED are terminal. Seller commands are checked for ownership
and source state; the deadline path is idempotent and never raises for an
auction that is already over.
"""
import logging

from django.conf import settings
from django.db import transaction

from .exceptions import ActionForbidden, AuctionExpired, BiddingError, InvalidState
from .models import Auction

logger = logging.getLogger(__name__)

Status = Auction.Status

ALLOWED_TRANSITIONS = {
    Status.DRAFT: {Status.ACTIVE, Status.CANCELLED},
    Status.ACTIVE: {Status.ENDED, Status.CANCELLED},
}

ACTION_NAMES = {
    Status.ACTIVE: 'start',
    Status.ENDED: 'end',
    Status.CANCELLED: 'cancel',
}


def check_transition(auction, new_status, actor_id, now):
    if actor_id != auction.seller_id:
        raise ActionForbidden()
    if new_status not in ALLOWED_TRANSITIONS.get(auction.status, ()):
        raise InvalidState(ACTION_NAMES[new_status], auction.status)
    if new_status == Status.ACTIVE and auction.end_time <= now:
        raise AuctionExpired("Cannot start an auction whose end time has already passed.")


class AuctionLifecycle:
    def __init__(self, store, fanout):
        self.store = store
        self.fanout = fanout

    def _guard(self, auction, new_status, actor_id):
        check_transition(auction, new_status, actor_id, self.store.clock())

    def _transition(self, auction_id, new_status, actor_id, announce):
        transition = self.store.transition_status(auction_id, new_status, actor_id, guard=self._guard)
        logger.info(
            "Auction %s moved %s -> %s by user %s",
            auction_id, transition.previous_status, new_status, actor_id,
        )
        transaction.on_commit(lambda: announce(transition))
        return transition.auction

    def start(self, auction_id, actor_id):
        return self._transition(auction_id, Status.ACTIVE, actor_id, self.fanout.auction_started)

    def end(self, auction_id, actor_id):
        return self._transition(auction_id, Status.ENDED, actor_id, self.fanout.auction_ended)

    def cancel(self, auction_id, actor_id):
        return self._transition(auction_id, Status.CANCELLED, actor_id, self.fanout.auction_cancelled)

    def expire(self, auction_id):
        """Deadline transition. Returns the ended auction, or None if there was nothing to end."""
        transition = self.store.expire(auction_id)
        if transition is None:
            return None
        logger.info("Auction %s reached its deadline and ended", auction_id)
        transaction.on_commit(lambda: self.fanout.auction_ended(transition))
        return transition.auction

    def expire_if_due(self, auction):
        """Return ``auction``, ended first when its deadline has passed unobserved."""
        if auction.is_due:
            ended = self.expire(auction.pk)
            if ended is not None:
                return ended
            auction.refresh_from_db()
        return auction

    def expire_due(self):
        ended = []
        for auction_id in self.store.due_auction_ids():
            try:
                auction = self.expire(auction_id)
            except BiddingError:
                logger.exception("Could not end auction %s", auction_id)
                continue
            if auction is not None:
                ended.append(auction)
        return ended

    def announce_ending_soon(self, window_seconds=None):
        window_seconds = window_seconds or settings.AUCTION_ENDING_SOON_SECONDS
        auctions = self.store.ending_soon(window_seconds)
        for auction in auctions:
            self.fanout.auction_ending_soon(auction)
        return auctions

    def probe(self, auction_id, window_seconds=None):
        """
        Client "is this over yet" check: ends a due auction, or announces
        that it is ending soon when inside the warning window.
        """
        window_seconds = window_seconds or settings.AUCTION_ENDING_SOON_SECONDS
        auction = self.expire_if_due(self.store.get_auction(auction_id))
        if auction.status == Status.ACTIVE:
            remaining = (auction.end_time - self.store.clock()).total_seconds()
            if remaining <= window_seconds:
                self.fanout.auction_ending_soon(auction)
        return auction
