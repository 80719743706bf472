import logging

from django.conf import settings
from django.core.management.base import BaseCommand

from auctions.gateway import BidSocketHandler, BidSocketServer

logger = logging.getLogger('auctions.gateway')


class Command(BaseCommand):
    help = "Serve the live bidding socket (one JSON message per line)."

    def add_arguments(self, parser):
        parser.add_argument('--host', default=settings.AUCTION_SOCKET_HOST)
        parser.add_argument('--port', type=int, default=settings.AUCTION_SOCKET_PORT)

    def handle(self, *args, **options):
        address = (options['host'], options['port'])
        with BidSocketServer(address, BidSocketHandler) as server:
            self.stdout.write(f"Bid socket listening on {address[0]}:{address[1]}")
            logger.info("Realtime backend: %s", settings.AUCTION_REALTIME_BACKEND)
            try:
                server.serve_forever()
            except KeyboardInterrupt:
                self.stdout.write("Shutting down bid socket")
