"""Wiring of the bidding engine and lifecycle controller for the transports."""
from django.conf import settings

from .engine import BiddingEngine
from .fanout import CeleryFanout, EventFanout
from .lifecycle import AuctionLifecycle
from .notifications import NotificationSink
from .realtime import get_channel
from .store import AuctionStore


def get_fanout():
    """Fan-out that delivers in the calling process."""
    return EventFanout(get_channel(), NotificationSink())


def build_services(store=None, channel=None, notifier=None):
    """Return ``(engine, lifecycle)`` sharing one store and fan-out."""
    store = store or AuctionStore()
    if channel is None and notifier is None and settings.AUCTION_FANOUT_DISPATCH == 'celery':
        fanout = CeleryFanout()
    else:
        fanout = EventFanout(channel or get_channel(), notifier or NotificationSink())
    lifecycle = AuctionLifecycle(store, fanout)
    engine = BiddingEngine(store, fanout, lifecycle)
    return engine, lifecycle


def get_engine():
    return build_services()[0]


def get_lifecycle():
    return build_services()[1]
