"""
Persistent socket transport for live bidding.

Clients open a TCP connection and exchange one JSON object per line. The
first frame authenticates the connection::

    {"event": "authenticate", "data": {"token": "<access token>"}}

after which the client may send ``join_auction``, ``leave_auction``,
``place_bid`` and ``auction_ending`` frames. Joined connections receive every
event published on the auction's channel (``new_bid``, ``auction_ended``...).
Bids go through the same ``BiddingEngine`` as the HTTP API.
Outbound frames are queued per connection and written by a dedicated
thread, so publishing to a connection never waits on its socket.
"""
import json
import logging
import queue
import socket
import socketserver
import threading

from django.db import close_old_connections, connection
from rest_framework.exceptions import APIException
from rest_framework_simplejwt.authentication import JWTAuthentication

from .exceptions import BiddingError
from .realtime import encode_event, get_channel
from .serializers import BidCreateSerializer, BidSerializer
from .services import build_services

logger = logging.getLogger(__name__)


def _auction_id(data):
    if isinstance(data, dict):
        data = data.get('auction_id')
    try:
        return int(data)
    except (TypeError, ValueError):
        return None


class AuctionSocketSession:
    """Event handling for one authenticated connection."""

    def __init__(self, user_id, send, engine, lifecycle, channel):
        self.user_id = user_id
        self.send = send
        self.engine = engine
        self.lifecycle = lifecycle
        self.channel = channel
        self.subscriptions = {}
        self.handlers = {
            'join_auction': self.join_auction,
            'leave_auction': self.leave_auction,
            'place_bid': self.place_bid,
            'auction_ending': self.auction_ending,
        }

    def emit(self, event, data):
        try:
            self.send({'event': event, 'data': data})
        except OSError:
            logger.debug("Dropped %s for disconnected user %s", event, self.user_id)

    def handle(self, frame):
        event = frame.get('event') if isinstance(frame, dict) else None
        handler = self.handlers.get(event)
        if handler is None:
            self.emit('error', {'detail': f'Unknown event: {event}', 'code': 'unknown_event'})
            return
        handler(frame.get('data'))

    def join_auction(self, data):
        auction_id = _auction_id(data)
        if auction_id is None:
            self.emit('error', {'detail': 'auction_id is required', 'code': 'invalid'})
            return
        try:
            self.lifecycle.store.get_auction(auction_id)
        except BiddingError as exc:
            self.emit('error', exc.as_payload())
            return
        if auction_id not in self.subscriptions:
            self.subscriptions[auction_id] = self.channel.subscribe(
                auction_id, lambda message: self.emit(message.get('type', 'update'), message)
            )
        logger.info("User %s joined auction %s", self.user_id, auction_id)
        self.emit('joined_auction', {'auction_id': auction_id})

    def leave_auction(self, data):
        auction_id = _auction_id(data)
        subscription = self.subscriptions.pop(auction_id, None)
        if subscription is not None:
            subscription.close()
        self.emit('left_auction', {'auction_id': auction_id})

    def place_bid(self, data):
        serializer = BidCreateSerializer(data=data if isinstance(data, dict) else {})
        if not serializer.is_valid():
            self.emit('bid_error', {'detail': 'Invalid bid', 'code': 'invalid', 'errors': serializer.errors})
            return
        try:
            result = self.engine.place_bid(
                serializer.validated_data['auction_id'],
                self.user_id,
                serializer.validated_data['amount'],
            )
        except BiddingError as exc:
            self.emit('bid_error', exc.as_payload())
            return
        self.emit('bid_success', {
            'message': 'Bid placed successfully',
            'bid': BidSerializer(result.bid).data,
        })

    def auction_ending(self, data):
        auction_id = _auction_id(data)
        if auction_id is None:
            return
        try:
            self.lifecycle.probe(auction_id)
        except BiddingError as exc:
            logger.debug("Ending probe for auction %s failed: %s", auction_id, exc)

    def close(self):
        for subscription in self.subscriptions.values():
            subscription.close()
        self.subscriptions.clear()


class FrameWriter:
    """
    Outbound frames for one connection, written by a dedicated thread.

    ``send`` never blocks. When a client stops reading and ``maxsize`` frames
    pile up, the connection is given up: ``on_overflow`` is called and later
    frames raise ``ConnectionError``.
    """

    def __init__(self, write, maxsize=256, on_overflow=None):
        self._write = write
        self._queue = queue.Queue(maxsize=maxsize)
        self._on_overflow = on_overflow
        self.closed = False
        self._thread = threading.Thread(target=self._run, name='frame-writer', daemon=True)
        self._thread.start()

    def send(self, frame):
        if self.closed:
            raise ConnectionError("connection is closed")
        line = (encode_event(frame) + '\n').encode('utf-8')
        try:
            self._queue.put_nowait(line)
        except queue.Full:
            logger.warning("Dropping connection that stopped reading (%s frames pending)", self._queue.maxsize)
            self.closed = True
            if self._on_overflow is not None:
                self._on_overflow()
            raise ConnectionError("client is not reading") from None

    def _run(self):
        while True:
            line = self._queue.get()
            if line is None:
                return
            try:
                self._write(line)
            except OSError:
                self.closed = True
                return

    def close(self, timeout=1.0):
        """Write what is queued, then stop the writer thread."""
        self.closed = True
        while True:
            try:
                self._queue.put_nowait(None)
                break
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass
        self._thread.join(timeout)


class BidSocketHandler(socketserver.StreamRequestHandler):
    authenticator = JWTAuthentication()

    def setup(self):
        super().setup()
        self.writer = FrameWriter(self._write_line, on_overflow=self._hang_up)

    def finish(self):
        self.writer.close()
        super().finish()

    def _write_line(self, line):
        self.wfile.write(line)
        self.wfile.flush()

    def _hang_up(self):
        try:
            self.connection.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def send(self, frame):
        try:
            self.writer.send(frame)
        except ConnectionError:
            logger.debug("Dropped %s frame for a closed connection", frame.get('event'))

    def read_frame(self):
        for raw in self.rfile:
            raw = raw.strip()
            if not raw:
                continue
            try:
                return json.loads(raw)
            except ValueError:
                self.send({'event': 'error', 'data': {'detail': 'Malformed JSON', 'code': 'invalid'}})
        return None

    def authenticate(self):
        frame = self.read_frame()
        if not isinstance(frame, dict) or frame.get('event') != 'authenticate':
            self.send({'event': 'error', 'data': {'detail': 'Authentication error', 'code': 'not_authenticated'}})
            return None
        token = (frame.get('data') or {}).get('token', '')
        try:
            validated = self.authenticator.get_validated_token(token)
            user = self.authenticator.get_user(validated)
        except APIException:
            self.send({'event': 'error', 'data': {'detail': 'Authentication error', 'code': 'not_authenticated'}})
            return None
        self.send({'event': 'authenticated', 'data': {'user_id': user.pk}})
        return user

    def handle(self):
        close_old_connections()
        session = None
        try:
            user = self.authenticate()
            if user is None:
                return
            logger.info("User %s connected from %s", user.pk, self.client_address)
            engine, lifecycle = build_services()
            session = AuctionSocketSession(user.pk, self.send, engine, lifecycle, get_channel())
            while True:
                frame = self.read_frame()
                if frame is None:
                    break
                try:
                    session.handle(frame)
                except Exception:
                    logger.exception("Failed to handle frame %r from user %s", frame, user.pk)
                    session.emit('error', {'detail': 'Failed to process request', 'code': 'server_error'})
            logger.info("User %s disconnected", user.pk)
        finally:
            if session is not None:
                session.close()
            connection.close()


class BidSocketServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True
