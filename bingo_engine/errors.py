"""Exception hierarchy and purchase failure classification."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class BingoError(Exception):
    """Base class for every error raised by the engine."""


class InvalidStateTransition(BingoError):
    pass


class RoundNotFound(BingoError):
    def __init__(self, round_id) -> None:
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


# ============ Purchase ============


class PurchaseError(BingoError):
    pass


class InsufficientFunds(PurchaseError):
    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(f"Insufficient balance: need {required}, have {available}")


class InvalidCardCount(PurchaseError):
    def __init__(self, count: int, maximum: int) -> None:
        self.count = count
        self.maximum = maximum
        super().__init__(f"Card count must be between 1 and {maximum}, got {count}")


class PurchaseInProgress(PurchaseError):
    def __init__(self) -> None:
        super().__init__("A purchase is already in progress")


class PurchaseStepError(PurchaseError):
    """A funds-commitment step failed; `step` is "approve" or "buy"."""

    def __init__(self, step: str, cause: BaseException, approved: bool = False) -> None:
        self.step = step
        self.cause = cause
        self.approved = approved
        super().__init__(f"{step} step failed: {cause}")


class PurchaseErrorKind(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_REQUEST = "invalid_request"
    USER_REJECTED = "user_rejected"
    ROUND_EXPIRED = "round_expired"
    PENDING_TRANSACTION = "pending_transaction"
    STALE_NONCE = "stale_nonce"
    PURCHASE_FAILED_NO_FUNDS_MOVED = "purchase_failed_no_funds_moved"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PurchaseFailure:
    kind: PurchaseErrorKind
    message: Optional[str]
    step: Optional[str] = None

    @property
    def recoverable(self) -> bool:
        return self.kind is not PurchaseErrorKind.UNKNOWN


ROUND_NOT_FOUND_SELECTOR = "0x666710f4"
ROUND_EXPIRED_MESSAGE = "This round has expired. The lobby will refresh with the current round."

_REJECTION_CODES = (4001, "4001", "ACTION_REJECTED")
_REJECTION_TEXT = ("user rejected", "user denied", "action_rejected")
_REPLACEMENT_TEXT = (
    "replacement transaction underpriced",
    "replacement fee too low",
    "replacement_underpriced",
)
_NONCE_TEXT = ("nonce too low", "nonce has already been used", "nonce_expired")


def _describe(exc: BaseException) -> str:
    parts = [str(exc)]
    for attr in ("code", "data", "reason"):
        value = getattr(exc, attr, None)
        if value is not None:
            parts.append(str(value))
    return " ".join(parts).lower()


def classify_purchase_error(exc: BaseException) -> PurchaseFailure:
    step = exc.step if isinstance(exc, PurchaseStepError) else None
    cause = exc.cause if isinstance(exc, PurchaseStepError) else exc

    if isinstance(cause, InsufficientFunds):
        return PurchaseFailure(PurchaseErrorKind.INSUFFICIENT_FUNDS, str(cause), step)
    if isinstance(cause, (InvalidCardCount, PurchaseInProgress)):
        return PurchaseFailure(PurchaseErrorKind.INVALID_REQUEST, str(cause), step)

    text = _describe(cause)
    if getattr(cause, "code", None) in _REJECTION_CODES or any(t in text for t in _REJECTION_TEXT):
        return PurchaseFailure(PurchaseErrorKind.USER_REJECTED, None, step)

    if (
        isinstance(cause, RoundNotFound)
        or "roundnotfound" in text
        or "round not found" in text
        or ROUND_NOT_FOUND_SELECTOR in text
    ):
        return PurchaseFailure(PurchaseErrorKind.ROUND_EXPIRED, ROUND_EXPIRED_MESSAGE, step)

    if any(t in text for t in _REPLACEMENT_TEXT):
        return PurchaseFailure(
            PurchaseErrorKind.PENDING_TRANSACTION,
            "A previous transaction is still pending. Cancel or speed it up, then try again.",
            step,
        )

    if any(t in text for t in _NONCE_TEXT):
        return PurchaseFailure(
            PurchaseErrorKind.STALE_NONCE,
            "The wallet nonce is out of date. Reset the account nonce and try again.",
            step,
        )

    if step == "buy":
        prefix = "The authorization succeeded but the purchase failed." if exc.approved else "The purchase failed."
        return PurchaseFailure(
            PurchaseErrorKind.PURCHASE_FAILED_NO_FUNDS_MOVED,
            f"{prefix} No funds were deducted. ({cause})",
            step,
        )

    return PurchaseFailure(PurchaseErrorKind.UNKNOWN, str(cause) or "Card purchase failed", step)
