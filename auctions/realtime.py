"""
Real-time auction channels.

Events for auction ``42`` are published on the channel ``auction_42``.
``LocalAuctionChannel`` delivers inside one process; ``RedisAuctionChannel``
uses Redis pub/sub so HTTP workers and socket servers can run separately.
"""
import json
import logging
import queue
import threading
from collections import defaultdict
from functools import lru_cache

import redis
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger(__name__)


def channel_name(auction_id):
    return f"auction_{auction_id}"


def encode_event(event):
    # Decimals stay exact strings ("1100.00"), never floats
    return json.dumps(event, cls=DjangoJSONEncoder)


class Subscription:
    def __init__(self, close):
        self._close = close
        self.closed = False

    def close(self):
        if not self.closed:
            self.closed = True
            self._close()


class LocalAuctionChannel:
    """
    In-process publish/subscribe; events are JSON round-tripped like Redis.

    ``publish`` only queues the message. Subscribers are called from the
    channel's delivery thread, so a slow subscriber never holds up the
    publisher.
    """

    def __init__(self):
        self._subscribers = defaultdict(list)
        self._lock = threading.Lock()
        self._queue = queue.Queue()
        self._worker = None

    def publish(self, auction_id, event):
        name = channel_name(auction_id)
        message = json.loads(encode_event(event))
        with self._lock:
            count = len(self._subscribers[name])
            if count and self._worker is None:
                self._worker = threading.Thread(target=self._deliver, name='auction-channel', daemon=True)
                self._worker.start()
        if count:
            self._queue.put((name, message))
        return count

    def _deliver(self):
        while True:
            name, message = self._queue.get()
            try:
                with self._lock:
                    callbacks = list(self._subscribers[name])
                for callback in callbacks:
                    try:
                        callback(message)
                    except Exception:
                        logger.exception("Subscriber of %s failed", name)
            finally:
                self._queue.task_done()

    def join(self):
        """Block until every published message has been delivered."""
        self._queue.join()

    def subscribe(self, auction_id, callback):
        name = channel_name(auction_id)
        with self._lock:
            self._subscribers[name].append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers[name]:
                    self._subscribers[name].remove(callback)
        return Subscription(unsubscribe)

    def subscriber_count(self, auction_id):
        with self._lock:
            return len(self._subscribers[channel_name(auction_id)])


class RedisAuctionChannel:
    def __init__(self, url=None, client=None):
        self.client = client or redis.Redis.from_url(url or settings.AUCTION_REDIS_URL)

    def publish(self, auction_id, event):
        return self.client.publish(channel_name(auction_id), encode_event(event))

    def subscribe(self, auction_id, callback):
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)

        def handler(message):
            try:
                callback(json.loads(message['data']))
            except Exception:
                logger.exception("Subscriber of %s failed", channel_name(auction_id))

        pubsub.subscribe(**{channel_name(auction_id): handler})
        worker = pubsub.run_in_thread(sleep_time=0.1, daemon=True)

        def unsubscribe():
            worker.stop()
            pubsub.close()
        return Subscription(unsubscribe)


@lru_cache(maxsize=None)
def _channel_for(backend, url):
    if backend == 'redis':
        return RedisAuctionChannel(url)
    if backend == 'local':
        return LocalAuctionChannel()
    raise ValueError(f"Unknown realtime backend: {backend!r}")


def get_channel():
    """Process-wide channel for the configured backend."""
    return _channel_for(settings.AUCTION_REALTIME_BACKEND, settings.AUCTION_REDIS_URL)
