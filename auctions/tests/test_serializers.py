from datetime import timedelta
from decimal import Decimal

from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIRequestFactory

from auctions.exceptions import InvalidState
from auctions.models import Auction
from auctions.serializers import (
    AuctionCreateSerializer,
    AuctionDetailSerializer,
    AuctionListSerializer,
    AuctionUpdateSerializer,
    BidCreateSerializer,
    BidSerializer,
    PlaceBidSerializer,
    format_time_left,
)

from .factories import AuctionFactory, BidFactory, CategoryFactory, UserFactory


class FormatTimeLeftTestCase(TestCase):
    def test_terminal_and_draft_labels(self):
        self.assertEqual(format_time_left(AuctionFactory.build(draft=True)), "Auction not started yet")
        self.assertEqual(format_time_left(AuctionFactory.build(status=Auction.Status.ENDED)), "Auction ended")
        self.assertEqual(format_time_left(AuctionFactory.build(status=Auction.Status.CANCELLED)), "Auction cancelled")

    def test_active_past_deadline(self):
        self.assertEqual(format_time_left(AuctionFactory.build(expired=True)), "Auction ended")

    def test_countdown_formats(self):
        now = timezone.now()
        long_running = AuctionFactory.build(end_time=now + timedelta(days=2, hours=3, minutes=30))
        self.assertRegex(format_time_left(long_running), r'^2d 3h (29|30)m$')

        closing = AuctionFactory.build(end_time=now + timedelta(minutes=5, seconds=30))
        self.assertRegex(format_time_left(closing), r'^5m \d+s$')


class BidSerializerTestCase(TestCase):
    def test_bid_serialization(self):
        bid = BidFactory(amount=Decimal('1100.00'), is_winning=True)
        data = BidSerializer(bid).data
        self.assertEqual(data['amount'], '1100.00')
        self.assertEqual(data['auction'], bid.auction_id)
        self.assertEqual(data['bidder_username'], bid.bidder.username)
        self.assertTrue(data['is_winning'])

    def test_place_bid_shape(self):
        self.assertTrue(PlaceBidSerializer(data={'amount': '1100.50'}).is_valid())
        for amount in ['0', '-1', '10.001', 'abc']:
            with self.subTest(amount=amount):
                self.assertFalse(PlaceBidSerializer(data={'amount': amount}).is_valid())

    def test_bid_create_needs_auction(self):
        serializer = BidCreateSerializer(data={'amount': '1100'})
        self.assertFalse(serializer.is_valid())
        self.assertIn('auction_id', serializer.errors)


class AuctionReadSerializerTestCase(TestCase):
    def test_list_fields(self):
        auction = AuctionFactory(category=CategoryFactory(slug='watches'))
        data = AuctionListSerializer(auction).data
        self.assertEqual(data['category'], 'watches')
        self.assertEqual(data['minimum_bid'], '1100.00')
        self.assertEqual(data['status'], 'ACTIVE')
        self.assertNotIn('bids', data)

    def test_detail_includes_bids_and_reserve(self):
        auction = AuctionFactory(reserve_price=Decimal('1050.00'))
        BidFactory(auction=auction, amount=Decimal('1100.00'), is_winning=True)
        Auction.objects.filter(pk=auction.pk).update(current_price=Decimal('1100.00'), total_bids=1)
        auction.refresh_from_db()

        data = AuctionDetailSerializer(auction).data

        self.assertTrue(data['reserve_met'])
        self.assertEqual(len(data['bids']), 1)
        self.assertEqual(data['winning_bid']['amount'], '1100.00')
        self.assertEqual(data['reserve_price'], '1050.00')


class AuctionWriteSerializerTestCase(TestCase):
    def setUp(self):
        self.user = UserFactory()
        self.request = APIRequestFactory().post('/api/v1/auctions/')
        self.request.user = self.user
        self.data = {
            'title': 'Film camera',
            'description': 'Fully serviced',
            'starting_price': '200.00',
            'end_time': timezone.now() + timedelta(days=1),
        }

    def serializer(self, data, **kwargs):
        return AuctionCreateSerializer(data=data, context={'request': self.request}, **kwargs)

    def test_create_sets_seller_price_and_draft(self):
        serializer = self.serializer(self.data)
        self.assertTrue(serializer.is_valid(), serializer.errors)
        auction = serializer.save()
        self.assertEqual(auction.seller, self.user)
        self.assertEqual(auction.current_price, Decimal('200.00'))
        self.assertEqual(auction.status, Auction.Status.DRAFT)

    def test_status_cannot_be_written(self):
        serializer = self.serializer({**self.data, 'status': 'ACTIVE'})
        self.assertTrue(serializer.is_valid())
        self.assertEqual(serializer.save().status, Auction.Status.DRAFT)

    def test_negative_starting_price(self):
        serializer = self.serializer({**self.data, 'starting_price': '-1.00'})
        self.assertFalse(serializer.is_valid())
        self.assertIn('starting_price', serializer.errors)

    def test_end_time_must_be_in_future(self):
        serializer = self.serializer({**self.data, 'end_time': timezone.now() - timedelta(minutes=1)})
        self.assertFalse(serializer.is_valid())
        self.assertIn('end_time', serializer.errors)

    def test_reserve_below_starting_price(self):
        serializer = self.serializer({**self.data, 'reserve_price': '100.00'})
        self.assertFalse(serializer.is_valid())
        self.assertIn('non_field_errors', serializer.errors)

    @override_settings(AUCTION_MIN_BID_INCREMENT_FLOOR=Decimal('5.00'))
    def test_increment_floor_is_configurable(self):
        serializer = self.serializer({**self.data, 'min_bid_increment': '4.99'})
        self.assertFalse(serializer.is_valid())
        self.assertIn('min_bid_increment', serializer.errors)

    def test_update_only_while_draft(self):
        draft = AuctionFactory(seller=self.user, draft=True)
        serializer = AuctionUpdateSerializer(draft, data={'starting_price': '300.00'}, partial=True)
        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertEqual(serializer.save().current_price, Decimal('300.00'))

        active = AuctionFactory(seller=self.user)
        serializer = AuctionUpdateSerializer(active, data={'title': 'Too late'}, partial=True)
        with self.assertRaises(InvalidState):
            serializer.is_valid()
