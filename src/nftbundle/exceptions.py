"""Exception hierarchy for nftbundle.

Every error raised by the purchase pipeline inherits from NFTBundleError and
carries the stage that produced it, so callers can decide whether re-running
with adjusted parameters makes sense:

- ResolutionError: the order for an item could not be used (raised before any
  transaction is built)
- EncodingError: an item could not be encoded into a call
- BundleError: signing or bundle assembly failed (raised before any network call)
- SubmissionError: delivery to the relay or public pool failed

Usage:
    from nftbundle.exceptions import NFTBundleError, ResolutionError

    try:
        result = await orchestrator.purchase(request)
    except ResolutionError as e:
        print(e.to_dict())
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


class NFTBundleError(Exception):
    """Base exception for all nftbundle errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "ORDER_NOT_FOUND")
        stage: Pipeline stage that raised the error
        details: Optional additional context
    """

    error_code: str = "NFTBUNDLE_ERROR"
    stage: str = "unknown"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a structured report."""
        result = {
            "error": self.error_code,
            "stage": self.stage,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Resolution Errors
# =============================================================================

class ResolutionError(NFTBundleError):
    """Base class for order resolution errors."""

    error_code = "RESOLUTION_ERROR"
    stage = "resolve"

    def __init__(
        self,
        message: str,
        contract: Optional[str] = None,
        token_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if contract:
            details["contract"] = contract
        if token_id is not None:
            details["token_id"] = str(token_id)
        self.contract = contract
        self.token_id = token_id
        super().__init__(message, details=details)


class OrderNotFound(ResolutionError):
    """No active sell order exists for the requested token."""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, contract: str, token_id: int) -> None:
        super().__init__(
            f"No active sell order for {contract} token {token_id}",
            contract=contract,
            token_id=token_id,
        )


class InsufficientQuantity(ResolutionError):
    """Requested quantity exceeds what the order offers."""

    error_code = "INSUFFICIENT_QUANTITY"

    def __init__(
        self,
        requested: int,
        available: int,
        contract: Optional[str] = None,
        token_id: Optional[int] = None,
    ) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} but only {available} available",
            contract=contract,
            token_id=token_id,
            details={"requested": requested, "available": available},
        )


class UnsupportedOrderKind(ResolutionError):
    """Order uses a fee or payment structure the encoder cannot represent."""

    error_code = "UNSUPPORTED_ORDER_KIND"

    def __init__(
        self,
        reason: str,
        contract: Optional[str] = None,
        token_id: Optional[int] = None,
    ) -> None:
        self.reason = reason
        super().__init__(
            f"Unsupported order: {reason}",
            contract=contract,
            token_id=token_id,
            details={"reason": reason},
        )


class CurrencyMismatch(ResolutionError):
    """The order demands a different currency than the buyer funds with."""

    error_code = "CURRENCY_MISMATCH"

    def __init__(
        self,
        expected: str,
        actual: str,
        contract: Optional[str] = None,
        token_id: Optional[int] = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Order is priced in {actual}, buyer funds with {expected}",
            contract=contract,
            token_id=token_id,
            details={"funding_token": expected, "payment_token": actual},
        )


class OrderbookUnavailable(ResolutionError):
    """The orderbook could not be queried or returned unreadable data."""

    error_code = "ORDERBOOK_UNAVAILABLE"


class BatchResolutionError(ResolutionError):
    """One or more items of a purchase request failed to resolve."""

    error_code = "BATCH_RESOLUTION_FAILED"

    def __init__(self, failures: List[tuple[int, ResolutionError]]) -> None:
        self.failures = failures
        summary = "; ".join(
            f"item {index}: {error.message}" for index, error in failures[:3]
        )
        super().__init__(
            f"{len(failures)} item(s) failed to resolve: {summary}",
            details={
                "failures": [
                    {"index": index, **error.to_dict()} for index, error in failures
                ]
            },
        )


# =============================================================================
# Encoding Errors
# =============================================================================

class EncodingError(NFTBundleError):
    """Base class for call encoding errors."""

    error_code = "ENCODING_ERROR"
    stage = "encode"


class InvalidQuantity(EncodingError):
    """Quantity is not valid for the token standard."""

    error_code = "INVALID_QUANTITY"

    def __init__(self, quantity: int, standard: str, reason: str) -> None:
        self.quantity = quantity
        super().__init__(
            f"Invalid quantity {quantity} for {standard}: {reason}",
            details={"quantity": quantity, "standard": standard},
        )


class UnsupportedStandard(EncodingError):
    """Token standard is not one of the supported variants."""

    error_code = "UNSUPPORTED_STANDARD"

    def __init__(self, standard: Any) -> None:
        super().__init__(
            f"Unsupported token standard: {standard}",
            details={"standard": str(standard)},
        )


# =============================================================================
# Bundle Errors
# =============================================================================

class BundleError(NFTBundleError):
    """Base class for bundle assembly errors."""

    error_code = "BUNDLE_ERROR"
    stage = "sign"


class SigningError(BundleError):
    """Signing key is invalid or signing failed."""

    error_code = "SIGNING_ERROR"


class EmptyBundle(BundleError):
    """No calls were supplied to the bundle builder."""

    error_code = "EMPTY_BUNDLE"

    def __init__(self) -> None:
        super().__init__("Cannot build a bundle without calls")


# =============================================================================
# Submission Errors
# =============================================================================

class SubmissionError(NFTBundleError):
    """Base class for submission errors."""

    error_code = "SUBMISSION_ERROR"
    stage = "submit"


class RelayRejected(SubmissionError):
    """The relay rejected the bundle for every target block."""

    error_code = "RELAY_REJECTED"

    def __init__(
        self,
        message: str,
        target_block: Optional[int] = None,
        permanent: bool = False,
    ) -> None:
        self.target_block = target_block
        self.permanent = permanent
        details: dict[str, Any] = {"permanent": permanent}
        if target_block is not None:
            details["target_block"] = target_block
        super().__init__(message, details=details)


class PublicBroadcastFailed(SubmissionError):
    """A transaction broadcast to the public pool failed or reverted."""

    error_code = "PUBLIC_BROADCAST_FAILED"

    def __init__(
        self,
        index: int,
        reason: str,
        succeeded: Optional[List[int]] = None,
        not_attempted: Optional[List[int]] = None,
    ) -> None:
        self.index = index
        self.reason = reason
        self.succeeded = succeeded or []
        self.not_attempted = not_attempted or []
        super().__init__(
            f"Transaction {index} failed on the public pool: {reason}",
            details={
                "index": index,
                "reason": reason,
                "succeeded": self.succeeded,
                "not_attempted": self.not_attempted,
            },
        )
