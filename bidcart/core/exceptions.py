"""
Auction engine error taxonomy

Every error carries a stable machine-readable ``kind`` plus a human-readable
message. The API layer turns them into JSON bodies of the form::

    {"error": "<kind>", "message": "...", **details}
"""
from decimal import Decimal
from typing import Any, Dict, Optional


class AuctionError(Exception):
    """Base exception for auction engine errors"""

    kind = "auction_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "error": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        for key, value in self.details.items():
            body[key] = float(value) if isinstance(value, Decimal) else value
        return body


class ValidationError(AuctionError):
    """Malformed schedule or bid parameters"""
    kind = "validation_error"
    status_code = 400


class AuctionNotFoundError(AuctionError):
    kind = "auction_not_found"
    status_code = 404


class InvalidStateError(AuctionError):
    """Operation attempted from the wrong lifecycle state"""
    kind = "invalid_state"
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None, **details: Any):
        super().__init__(message, current_status=current_status, **details)
        self.current_status = current_status


class AuctionNotActiveError(AuctionError):
    """Bid arrived outside the biddable window"""
    kind = "auction_not_active"
    status_code = 409


class SelfBidError(AuctionError):
    kind = "self_bid"
    status_code = 403


class BidTooLowError(AuctionError):
    """Bid under the current minimum; retry with ``min_next_bid``"""
    kind = "bid_too_low"
    status_code = 400
    retryable = True

    def __init__(self, min_next_bid: Decimal, message: Optional[str] = None):
        super().__init__(
            message or f"Bid must be at least ${min_next_bid:.2f}",
            min_next_bid=min_next_bid,
        )
        self.min_next_bid = min_next_bid


class ConcurrencyConflictError(AuctionError):
    """Lost the atomic race too many times; safe to retry with fresh state"""
    kind = "concurrency_conflict"
    status_code = 409
    retryable = True
