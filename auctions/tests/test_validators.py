from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

from django.test import SimpleTestCase

from auctions.exceptions import (
    AuctionExpired,
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    SelfBidForbidden,
)
from auctions.models import Auction
from auctions.validators import AuctionSnapshot, validate_bid

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=dt_timezone.utc)


def snapshot(**overrides):
    values = dict(
        id=1,
        seller_id=10,
        status=Auction.Status.ACTIVE,
        current_price=Decimal('1000.00'),
        min_bid_increment=Decimal('100.00'),
        end_time=NOW + timedelta(hours=1),
    )
    values.update(overrides)
    return AuctionSnapshot(**values)


class ValidateBidTestCase(SimpleTestCase):
    def test_accepts_exact_minimum(self):
        """A bid of exactly current price + increment is accepted"""
        self.assertIsNone(validate_bid(snapshot(), 20, Decimal('1100.00'), NOW))

    def test_accepts_above_minimum(self):
        self.assertIsNone(validate_bid(snapshot(), 20, Decimal('5000'), NOW))

    def test_missing_auction(self):
        with self.assertRaises(AuctionNotFound):
            validate_bid(None, 20, Decimal('1100.00'), NOW)

    def test_rejects_inactive_statuses(self):
        """Draft, ended and cancelled auctions report their status"""
        for status in (Auction.Status.DRAFT, Auction.Status.ENDED, Auction.Status.CANCELLED):
            with self.subTest(status=status):
                with self.assertRaises(AuctionNotActive) as ctx:
                    validate_bid(snapshot(status=status), 20, Decimal('1100.00'), NOW)
                self.assertEqual(ctx.exception.current_status, status)

    def test_rejects_self_bid_regardless_of_amount(self):
        for amount in (Decimal('1'), Decimal('1100.00'), Decimal('1000000')):
            with self.subTest(amount=amount):
                with self.assertRaises(SelfBidForbidden):
                    validate_bid(snapshot(), 10, amount, NOW)

    def test_rejects_at_deadline(self):
        """end_time equal to now counts as expired"""
        with self.assertRaises(AuctionExpired):
            validate_bid(snapshot(end_time=NOW), 20, Decimal('1100.00'), NOW)

    def test_rejects_below_minimum_with_computed_minimum(self):
        with self.assertRaises(BidTooLow) as ctx:
            validate_bid(snapshot(), 20, Decimal('1050.00'), NOW)
        self.assertEqual(ctx.exception.minimum_bid, Decimal('1100.00'))
        self.assertIn('1100.00', str(ctx.exception))
        self.assertEqual(ctx.exception.as_payload()['minimum_bid'], '1100.00')

    def test_check_order_status_before_self_bid(self):
        """An ended auction reports not-active even to its own seller"""
        with self.assertRaises(AuctionNotActive):
            validate_bid(snapshot(status=Auction.Status.ENDED), 10, Decimal('1'), NOW)

    def test_check_order_self_bid_before_deadline(self):
        with self.assertRaises(SelfBidForbidden):
            validate_bid(snapshot(end_time=NOW - timedelta(minutes=1)), 10, Decimal('1100'), NOW)

    def test_check_order_deadline_before_amount(self):
        with self.assertRaises(AuctionExpired):
            validate_bid(snapshot(end_time=NOW - timedelta(minutes=1)), 20, Decimal('1'), NOW)

    def test_same_inputs_same_result(self):
        snap = snapshot()
        for _ in range(3):
            with self.assertRaises(BidTooLow):
                validate_bid(snap, 20, Decimal('1099.99'), NOW)

    def test_snapshot_minimum_bid(self):
        self.assertEqual(snapshot(current_price=Decimal('1150.00')).minimum_bid, Decimal('1250.00'))
