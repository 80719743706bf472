from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from auctions.exceptions import ActionForbidden, AuctionExpired, AuctionNotFound, InvalidState
from auctions.models import Auction, Notification
from auctions.services import build_services

from .factories import AuctionFactory, RecordingChannel, UserFactory


class LifecycleTestCase(TestCase):
    def setUp(self):
        self.channel = RecordingChannel()
        self.engine, self.lifecycle = build_services(channel=self.channel)
        self.seller = UserFactory()
        self.other = UserFactory()
        self.bidders = [UserFactory() for _ in range(3)]

    def bid(self, auction, user, amount):
        return self.engine.place_bid(auction.pk, user.pk, Decimal(amount))

    def make_expired(self, auction):
        Auction.objects.filter(pk=auction.pk).update(end_time=timezone.now() - timedelta(seconds=5))


class StartAuctionTestCase(LifecycleTestCase):
    def test_start_from_draft(self):
        auction = AuctionFactory(seller=self.seller, draft=True)
        with self.captureOnCommitCallbacks(execute=True):
            started = self.lifecycle.start(auction.pk, self.seller.pk)

        self.assertEqual(started.status, Auction.Status.ACTIVE)
        self.assertIsNotNone(started.start_time)
        self.assertLessEqual(started.start_time, timezone.now())
        self.assertEqual(self.channel.types(), ['auction_started'])

    def test_start_by_non_owner_forbidden(self):
        auction = AuctionFactory(seller=self.seller, draft=True)
        with self.assertRaises(ActionForbidden):
            self.lifecycle.start(auction.pk, self.other.pk)
        auction.refresh_from_db()
        self.assertEqual(auction.status, Auction.Status.DRAFT)

    def test_start_from_active_is_invalid_state(self):
        auction = AuctionFactory(seller=self.seller)
        with self.assertRaises(InvalidState) as ctx:
            self.lifecycle.start(auction.pk, self.seller.pk)
        self.assertEqual(ctx.exception.current_status, Auction.Status.ACTIVE)
        self.assertEqual(ctx.exception.as_payload()['current_status'], 'ACTIVE')

    def test_start_after_end_time_rejected(self):
        auction = AuctionFactory(seller=self.seller, draft=True, expired=True)
        with self.assertRaises(AuctionExpired):
            self.lifecycle.start(auction.pk, self.seller.pk)

    def test_start_missing_auction(self):
        with self.assertRaises(AuctionNotFound):
            self.lifecycle.start(424242, self.seller.pk)


class EndAuctionTestCase(LifecycleTestCase):
    def test_manual_end_notifies_winner_once(self):
        auction = AuctionFactory(seller=self.seller)
        self.bid(auction, self.bidders[0], '1100')
        self.bid(auction, self.bidders[1], '1200')

        with self.captureOnCommitCallbacks(execute=True):
            ended = self.lifecycle.end(auction.pk, self.seller.pk)

        self.assertEqual(ended.status, Auction.Status.ENDED)
        self.assertLessEqual(ended.end_time, timezone.now())
        won = Notification.objects.filter(type=Notification.Type.AUCTION_WON)
        self.assertEqual(won.count(), 1)
        self.assertEqual(won.get().user, self.bidders[1])
        self.assertEqual(self.channel.types(), ['auction_ended'])

    def test_manual_end_without_bids(self):
        auction = AuctionFactory(seller=self.seller)
        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.end(auction.pk, self.seller.pk)
        self.assertFalse(Notification.objects.exists())
        _, event = self.channel.events[0]
        self.assertIsNone(event['winning_bid'])

    def test_manual_end_by_non_owner_forbidden(self):
        auction = AuctionFactory(seller=self.seller)
        with self.assertRaises(ActionForbidden):
            self.lifecycle.end(auction.pk, self.bidders[0].pk)

    def test_manual_end_from_draft_is_invalid_state(self):
        auction = AuctionFactory(seller=self.seller, draft=True)
        with self.assertRaises(InvalidState) as ctx:
            self.lifecycle.end(auction.pk, self.seller.pk)
        self.assertEqual(ctx.exception.current_status, Auction.Status.DRAFT)

    def test_manual_end_of_ended_auction_is_invalid_state(self):
        auction = AuctionFactory(seller=self.seller)
        self.lifecycle.end(auction.pk, self.seller.pk)
        with self.assertRaises(InvalidState) as ctx:
            self.lifecycle.end(auction.pk, self.seller.pk)
        self.assertEqual(ctx.exception.current_status, Auction.Status.ENDED)


class CancelAuctionTestCase(LifecycleTestCase):
    def test_cancel_notifies_each_distinct_bidder_once(self):
        auction = AuctionFactory(seller=self.seller)
        amounts = ['1100', '1200', '1300', '1400', '1500']
        order = [self.bidders[0], self.bidders[1], self.bidders[0], self.bidders[2], self.bidders[1]]
        for user, amount in zip(order, amounts):
            self.bid(auction, user, amount)

        with self.captureOnCommitCallbacks(execute=True):
            cancelled = self.lifecycle.cancel(auction.pk, self.seller.pk)

        self.assertEqual(cancelled.status, Auction.Status.CANCELLED)
        notices = Notification.objects.filter(type=Notification.Type.AUCTION_CANCELLED)
        self.assertEqual(notices.count(), 3)
        self.assertEqual(
            sorted(notices.values_list('user_id', flat=True)),
            sorted(user.pk for user in self.bidders),
        )

    def test_cancel_draft(self):
        auction = AuctionFactory(seller=self.seller, draft=True)
        cancelled = self.lifecycle.cancel(auction.pk, self.seller.pk)
        self.assertEqual(cancelled.status, Auction.Status.CANCELLED)

    def test_cancel_ended_is_invalid_state(self):
        auction = AuctionFactory(seller=self.seller, status=Auction.Status.ENDED)
        with self.assertRaises(InvalidState) as ctx:
            self.lifecycle.cancel(auction.pk, self.seller.pk)
        self.assertEqual(ctx.exception.current_status, Auction.Status.ENDED)

    def test_cancel_cancelled_is_invalid_state(self):
        auction = AuctionFactory(seller=self.seller, status=Auction.Status.CANCELLED)
        with self.assertRaises(InvalidState):
            self.lifecycle.cancel(auction.pk, self.seller.pk)

    def test_cancel_by_non_owner_forbidden(self):
        auction = AuctionFactory(seller=self.seller)
        with self.assertRaises(ActionForbidden):
            self.lifecycle.cancel(auction.pk, self.other.pk)
        auction.refresh_from_db()
        self.assertEqual(auction.status, Auction.Status.ACTIVE)


class DeadlineTestCase(LifecycleTestCase):
    def test_deadline_observation_ends_and_notifies_once(self):
        auction = AuctionFactory(seller=self.seller)
        self.bid(auction, self.bidders[0], '1100')
        self.make_expired(auction)

        with self.captureOnCommitCallbacks(execute=True):
            ended = self.lifecycle.expire(auction.pk)
            again = self.lifecycle.expire(auction.pk)

        self.assertEqual(ended.status, Auction.Status.ENDED)
        self.assertIsNone(again)
        won = Notification.objects.filter(type=Notification.Type.AUCTION_WON)
        self.assertEqual(won.count(), 1)
        self.assertEqual(won.get().user, self.bidders[0])

    def test_deadline_path_on_manually_ended_auction_is_noop(self):
        auction = AuctionFactory(seller=self.seller)
        self.lifecycle.end(auction.pk, self.seller.pk)
        self.assertIsNone(self.lifecycle.expire(auction.pk))

    def test_deadline_path_ignores_auctions_not_yet_due(self):
        auction = AuctionFactory(seller=self.seller)
        self.assertIsNone(self.lifecycle.expire(auction.pk))
        auction.refresh_from_db()
        self.assertEqual(auction.status, Auction.Status.ACTIVE)

    def test_expire_if_due(self):
        auction = AuctionFactory(seller=self.seller, expired=True)
        observed = self.lifecycle.expire_if_due(auction)
        self.assertEqual(observed.status, Auction.Status.ENDED)

        live = AuctionFactory(seller=self.seller)
        self.assertEqual(self.lifecycle.expire_if_due(live).status, Auction.Status.ACTIVE)

    def test_expire_due_sweeps_only_due_auctions(self):
        due = [AuctionFactory(seller=self.seller, expired=True) for _ in range(2)]
        live = AuctionFactory(seller=self.seller)
        cancelled = AuctionFactory(seller=self.seller, expired=True, status=Auction.Status.CANCELLED)

        ended = self.lifecycle.expire_due()

        self.assertEqual(sorted(a.pk for a in ended), sorted(a.pk for a in due))
        live.refresh_from_db()
        cancelled.refresh_from_db()
        self.assertEqual(live.status, Auction.Status.ACTIVE)
        self.assertEqual(cancelled.status, Auction.Status.CANCELLED)
        self.assertEqual(self.lifecycle.expire_due(), [])

    def test_probe_announces_ending_soon(self):
        auction = AuctionFactory(seller=self.seller, end_time=timezone.now() + timedelta(minutes=2))
        self.lifecycle.probe(auction.pk, window_seconds=300)
        self.assertEqual(self.channel.types(), ['auction_ending_soon'])

    def test_probe_far_from_deadline_is_silent(self):
        auction = AuctionFactory(seller=self.seller)
        self.lifecycle.probe(auction.pk, window_seconds=300)
        self.assertEqual(self.channel.events, [])

    def test_probe_ends_due_auction(self):
        auction = AuctionFactory(seller=self.seller, expired=True)
        with self.captureOnCommitCallbacks(execute=True):
            observed = self.lifecycle.probe(auction.pk)
        self.assertEqual(observed.status, Auction.Status.ENDED)
        self.assertEqual(self.channel.types(), ['auction_ended'])

    def test_announce_ending_soon(self):
        soon = AuctionFactory(seller=self.seller, end_time=timezone.now() + timedelta(minutes=1))
        AuctionFactory(seller=self.seller)

        announced = self.lifecycle.announce_ending_soon(300)

        self.assertEqual([a.pk for a in announced], [soon.pk])
        _, event = self.channel.events[0]
        self.assertEqual(event['auction_id'], soon.pk)
        self.assertLessEqual(event['time_left'], 60)
