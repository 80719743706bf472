"""
Pure bid validation.

``validate_bid`` looks only at an ``AuctionSnapshot`` and the candidate bid,
so it can be tested without a database and re-run inside the commit
transaction against freshly locked state.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .exceptions import (
    AuctionExpired,
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    SelfBidForbidden,
)
from .models import Auction


@dataclass(frozen=True)
class AuctionSnapshot:
    id: int
    seller_id: int
    status: str
    current_price: Decimal
    min_bid_increment: Decimal
    end_time: datetime
    total_bids: int = 0

    @classmethod
    def from_auction(cls, auction: Auction) -> "AuctionSnapshot":
        return cls(
            id=auction.pk,
            seller_id=auction.seller_id,
            status=auction.status,
            current_price=auction.current_price,
            min_bid_increment=auction.min_bid_increment,
            end_time=auction.end_time,
            total_bids=auction.total_bids,
        )

    @property
    def minimum_bid(self) -> Decimal:
        return self.current_price + self.min_bid_increment


def validate_bid(snapshot: Optional[AuctionSnapshot], bidder_id: int,
                 amount: Decimal, now: datetime) -> None:
    """
    Raise the first rejection that applies to ``amount`` from ``bidder_id``.

    Checks run in a fixed order: existence, status, self-bid, deadline,
    then the minimum increment.
    """
    if snapshot is None:
        raise AuctionNotFound()
    if snapshot.status != Auction.Status.ACTIVE:
        raise AuctionNotActive(snapshot.status)
    if bidder_id == snapshot.seller_id:
        raise SelfBidForbidden()
    if snapshot.end_time <= now:
        raise AuctionExpired()
    if amount < snapshot.minimum_bid:
        raise BidTooLow(snapshot.minimum_bid)
