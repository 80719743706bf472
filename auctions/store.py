"""
Database-backed auction and bid store.

All writes that touch an auction's price, bid count, winning flag or status
happen inside one ``transaction.atomic()`` block with the auction row locked
(``select_for_update``). The price/count update is additionally conditioned
on the values read under the lock, so backends without row locks still
cannot commit two bids from the same price window.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from functools import wraps
from typing import Callable, List, Optional, Tuple

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import AuctionHasBids, AuctionNotFound, BidConflict, StoreUnavailable
from .models import Auction, Bid
from .validators import AuctionSnapshot, validate_bid

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class BidResult:
    bid: Bid
    auction: Auction
    previous_winner: Optional[Bid] = None


@dataclass(frozen=True)
class StatusTransition:
    auction: Auction
    previous_status: str
    winning_bid: Optional[Bid] = None
    bidder_ids: Tuple[int, ...] = field(default_factory=tuple)


def translate_store_errors(func):
    """Map database failures onto the typed store errors."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except IntegrityError as exc:
            logger.warning("Integrity error in %s, reporting conflict: %s", func.__name__, exc)
            raise BidConflict() from exc
        except DatabaseError as exc:
            logger.exception("Store failure in %s", func.__name__)
            raise StoreUnavailable() from exc
    return wrapper


class AuctionStore:
    """Auction/bid persistence for the bidding engine and lifecycle controller."""

    def __init__(self, clock: Callable = timezone.now):
        self.clock = clock

    @translate_store_errors
    def get_auction(self, auction_id) -> Auction:
        try:
            return Auction.objects.select_related('seller', 'category').get(pk=auction_id)
        except Auction.DoesNotExist:
            raise AuctionNotFound(auction_id)

    def read_snapshot(self, auction_id) -> AuctionSnapshot:
        return AuctionSnapshot.from_auction(self.get_auction(auction_id))

    def _lock(self, auction_id) -> Auction:
        try:
            return Auction.objects.select_for_update().get(pk=auction_id)
        except Auction.DoesNotExist:
            raise AuctionNotFound(auction_id)

    @translate_store_errors
    def commit_bid(self, auction_id, bidder_id, amount, check=validate_bid) -> BidResult:
        """
        Write a bid and advance the auction in one transaction.

        ``check`` is re-run against the row read under the lock; whatever it
        raises aborts the transaction before anything is written.
        """
        amount = Decimal(amount).quantize(CENTS)
        with transaction.atomic():
            auction = self._lock(auction_id)
            now = self.clock()
            snapshot = AuctionSnapshot.from_auction(auction)
            check(snapshot, bidder_id, amount, now)

            previous_winner = (
                Bid.objects.filter(auction_id=auction_id, is_winning=True)
                .select_related('bidder')
                .first()
            )
            updated = Auction.objects.filter(
                pk=auction_id,
                status=Auction.Status.ACTIVE,
                current_price=snapshot.current_price,
                total_bids=snapshot.total_bids,
            ).update(
                current_price=amount,
                total_bids=F('total_bids') + 1,
                updated_at=now,
            )
            if updated != 1:
                raise BidConflict()

            Bid.objects.filter(auction_id=auction_id, is_winning=True).update(is_winning=False)
            bid = Bid.objects.create(
                auction=auction,
                bidder_id=bidder_id,
                amount=amount,
                is_winning=True,
                created_at=now,
            )
            auction.refresh_from_db()

        return BidResult(bid=bid, auction=auction, previous_winner=previous_winner)

    @translate_store_errors
    def transition_status(self, auction_id, new_status, actor_id, guard) -> StatusTransition:
        """
        Move an auction to ``new_status`` after ``guard(auction, new_status, actor_id)``
        accepts the locked row.
        """
        with transaction.atomic():
            auction = self._lock(auction_id)
            previous_status = auction.status
            guard(auction, new_status, actor_id)

            now = self.clock()
            changes = {'status': new_status, 'updated_at': now}
            if new_status == Auction.Status.ACTIVE:
                changes['start_time'] = now
            elif new_status == Auction.Status.ENDED and auction.end_time > now:
                changes['end_time'] = now

            updated = Auction.objects.filter(pk=auction_id, status=previous_status).update(**changes)
            if updated != 1:
                raise BidConflict("The auction changed while the request was processed. Retry.")
            auction.refresh_from_db()

            winning_bid = None
            bidder_ids = ()
            if new_status == Auction.Status.ENDED:
                winning_bid = self.winning_bid(auction_id)
            elif new_status == Auction.Status.CANCELLED:
                bidder_ids = tuple(self.bidder_ids(auction_id))

        return StatusTransition(
            auction=auction,
            previous_status=previous_status,
            winning_bid=winning_bid,
            bidder_ids=bidder_ids,
        )

    @translate_store_errors
    def expire(self, auction_id) -> Optional[StatusTransition]:
        """
        End an ACTIVE auction whose deadline has passed.

        Returns None when there is nothing to do (already ended, cancelled,
        or not yet due) so repeated observers never transition twice.
        """
        with transaction.atomic():
            now = self.clock()
            updated = Auction.objects.filter(
                pk=auction_id,
                status=Auction.Status.ACTIVE,
                end_time__lte=now,
            ).update(status=Auction.Status.ENDED, updated_at=now)
            if not updated:
                return None
            auction = Auction.objects.get(pk=auction_id)
            winning_bid = self.winning_bid(auction_id)

        return StatusTransition(
            auction=auction,
            previous_status=Auction.Status.ACTIVE,
            winning_bid=winning_bid,
        )

    @translate_store_errors
    def delete_auction(self, auction_id):
        with transaction.atomic():
            auction = self._lock(auction_id)
            if auction.total_bids > 0 or Bid.objects.filter(auction_id=auction_id).exists():
                raise AuctionHasBids()
            auction.delete()

    def winning_bid(self, auction_id) -> Optional[Bid]:
        return (
            Bid.objects.filter(auction_id=auction_id, is_winning=True)
            .select_related('bidder')
            .first()
        )

    def bidder_ids(self, auction_id) -> List[int]:
        return list(
            Bid.objects.filter(auction_id=auction_id)
            .order_by('bidder_id')
            .values_list('bidder_id', flat=True)
            .distinct()
        )

    @translate_store_errors
    def due_auction_ids(self) -> List[int]:
        return list(
            Auction.objects.filter(status=Auction.Status.ACTIVE, end_time__lte=self.clock())
            .order_by('end_time')
            .values_list('id', flat=True)
        )

    @translate_store_errors
    def ending_soon(self, window_seconds) -> List[Auction]:
        now = self.clock()
        return list(
            Auction.objects.filter(
                status=Auction.Status.ACTIVE,
                end_time__gt=now,
                end_time__lte=now + timedelta(seconds=window_seconds),
            ).order_by('end_time')
        )
