"""
Bid placement shared by the HTTP views and the socket transport.

A bid is first checked against a plain read of the auction so obviously
invalid requests never take the row lock, then committed by the store,
which re-validates against the locked row. Fan-out is scheduled with
``transaction.on_commit`` so it runs once, after the bid is durable.
"""
import logging
from decimal import Decimal

from django.db import transaction

from .exceptions import AuctionExpired, BiddingError
from .store import BidResult
from .validators import validate_bid

logger = logging.getLogger(__name__)


class BiddingEngine:
    def __init__(self, store, fanout, lifecycle=None):
        self.store = store
        self.fanout = fanout
        self.lifecycle = lifecycle

    def place_bid(self, auction_id, bidder_id, amount: Decimal) -> BidResult:
        try:
            snapshot = self.store.read_snapshot(auction_id)
            validate_bid(snapshot, bidder_id, amount, self.store.clock())
            result = self.store.commit_bid(auction_id, bidder_id, amount, check=validate_bid)
        except BiddingError as exc:
            logger.info(
                "Rejected bid of %s by user %s on auction %s: %s",
                amount, bidder_id, auction_id, exc.code,
            )
            if isinstance(exc, AuctionExpired) and self.lifecycle is not None:
                try:
                    self.lifecycle.expire(auction_id)
                except BiddingError:
                    # The bidder still gets AuctionExpired; the sweep retries the end
                    logger.exception("Could not end expired auction %s", auction_id)
            raise

        logger.info(
            "Accepted bid %s of %s by user %s on auction %s (total bids %s)",
            result.bid.pk, amount, bidder_id, auction_id, result.auction.total_bids,
        )
        transaction.on_commit(lambda: self.fanout.bid_placed(result))
        return result
