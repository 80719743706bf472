from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase
from django.utils import timezone

from auctions.models import Auction, Notification
from auctions.realtime import LocalAuctionChannel
from auctions.services import build_services
from auctions.tasks import announce_ending_soon, expire_due_auctions

from .factories import AuctionFactory, BidFactory, UserFactory


class AuctionTasksTestCase(TestCase):
    def setUp(self):
        self.channel = LocalAuctionChannel()
        self.services = patch(
            'auctions.services.get_lifecycle',
            side_effect=lambda: build_services(channel=self.channel)[1],
        )
        self.services.start()
        self.addCleanup(self.services.stop)
        self.seller = UserFactory()

    def test_expire_due_auctions(self):
        """Due auctions end and their winner is told"""
        due = AuctionFactory(seller=self.seller, expired=True)
        winner = BidFactory(auction=due, amount=Decimal('1100.00'), is_winning=True)
        Auction.objects.filter(pk=due.pk).update(current_price=Decimal('1100.00'), total_bids=1)
        live = AuctionFactory(seller=self.seller)

        with self.captureOnCommitCallbacks(execute=True):
            result = expire_due_auctions()

        self.assertEqual(result, "Ended 1 auctions")
        due.refresh_from_db()
        live.refresh_from_db()
        self.assertEqual(due.status, Auction.Status.ENDED)
        self.assertEqual(live.status, Auction.Status.ACTIVE)
        won = Notification.objects.get(type=Notification.Type.AUCTION_WON)
        self.assertEqual(won.user, winner.bidder)

    def test_expire_due_auctions_is_idempotent(self):
        AuctionFactory(seller=self.seller, expired=True)
        self.assertEqual(expire_due_auctions(), "Ended 1 auctions")
        self.assertEqual(expire_due_auctions(), "Ended 0 auctions")

    def test_expire_skips_drafts_and_cancelled(self):
        AuctionFactory(seller=self.seller, expired=True, draft=True)
        AuctionFactory(seller=self.seller, expired=True, status=Auction.Status.CANCELLED)
        self.assertEqual(expire_due_auctions(), "Ended 0 auctions")

    def test_announce_ending_soon(self):
        soon = AuctionFactory(seller=self.seller, end_time=timezone.now() + timedelta(minutes=3))
        AuctionFactory(seller=self.seller)
        received = []
        self.channel.subscribe(soon.pk, received.append)

        result = announce_ending_soon(window_seconds=300)
        self.channel.join()

        self.assertEqual(result, "Announced 1 auctions ending soon")
        self.assertEqual(received[0]['type'], 'auction_ending_soon')
        self.assertEqual(received[0]['auction_id'], soon.pk)

    def test_tasks_are_registered(self):
        from marketplace.celery import app

        self.assertIn('auctions.tasks.expire_due_auctions', app.tasks)
        self.assertIn('auctions.tasks.announce_ending_soon', app.tasks)
        self.assertIn('auctions.tasks.deliver_fanout', app.tasks)
