"""
Typed outcomes of bidding and lifecycle operations.

Every error is a DRF ``APIException`` so the HTTP views can let the
framework render it; the socket transport uses ``as_payload()``.
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class BiddingError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The request could not be processed.'
    default_code = 'bidding_error'

    def __init__(self, message=None, **extra):
        self.message = message or str(self.default_detail)
        self.code = self.default_code
        self.extra = extra
        super().__init__(self.as_payload(), self.default_code)

    def as_payload(self):
        payload = {'detail': self.message, 'code': self.code}
        payload.update({key: str(value) for key, value in self.extra.items()})
        return payload

    def __str__(self):
        return self.message


class AuctionNotFound(BiddingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Auction not found.'
    default_code = 'not_found'

    def __init__(self, auction_id=None):
        self.auction_id = auction_id
        if auction_id is None:
            super().__init__()
        else:
            super().__init__(auction_id=auction_id)


class ActionForbidden(BiddingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Only the seller of this auction can do that.'
    default_code = 'forbidden'


class InvalidState(BiddingError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'invalid_state'

    def __init__(self, action, current_status):
        self.current_status = current_status
        super().__init__(
            f"Cannot {action} an auction that is {current_status}.",
            current_status=current_status,
        )


class AuctionNotActive(BiddingError):
    default_detail = 'Auction is not active.'
    default_code = 'auction_not_active'

    def __init__(self, current_status):
        self.current_status = current_status
        super().__init__(current_status=current_status)


class AuctionExpired(BiddingError):
    default_detail = 'Auction has ended.'
    default_code = 'auction_expired'


class SelfBidForbidden(BiddingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You cannot bid on your own auction.'
    default_code = 'self_bid_forbidden'


class BidTooLow(BiddingError):
    default_code = 'bid_too_low'

    def __init__(self, minimum_bid):
        self.minimum_bid = minimum_bid
        super().__init__(
            f"Minimum bid amount is {minimum_bid}.",
            minimum_bid=minimum_bid,
        )


class BidConflict(BiddingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Another bid was committed first. Refresh the price and retry.'
    default_code = 'conflict'


class AuctionHasBids(BiddingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'An auction with bids cannot be deleted. Cancel it instead.'
    default_code = 'auction_has_bids'


class StoreUnavailable(BiddingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'The auction store is temporarily unavailable. Please retry.'
    default_code = 'store_unavailable'
