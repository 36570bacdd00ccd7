"""Typed results shared by the activation / referral operations.

Public operations never raise for domain failures. They return a `Result` and the
caller branches on `result.ok` / `result.error`. Enum values double as the
machine-readable `code` in JSON responses.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class NonceError(enum.Enum):
    INVALID = "NONCE_INVALID"
    EXPIRED = "NONCE_EXPIRED"


class ActivationError(enum.Enum):
    SIGNATURE_EXPIRED = "SIGNATURE_EXPIRED"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    NONCE_INVALID = "NONCE_INVALID"
    NONCE_EXPIRED = "NONCE_EXPIRED"


class AttributionError(enum.Enum):
    AFFILIATE_NOT_FOUND = "AFFILIATE_NOT_FOUND"
    SELF_REFERRAL_REJECTED = "SELF_REFERRAL_REJECTED"
    CONFLICTING_BINDING = "CONFLICTING_BINDING"


class CompletionError(enum.Enum):
    MALFORMED_EVENT = "MALFORMED_EVENT"
    UNKNOWN_AFFILIATE = "UNKNOWN_AFFILIATE"


class AffiliateError(enum.Enum):
    INELIGIBLE = "INELIGIBLE"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    PROVIDER_ERROR = "PROVIDER_ERROR"


class CompletionOutcome(enum.Enum):
    """Successful completion outcomes. None of these are errors."""

    COUNTED = "COUNTED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    INELIGIBLE = "INELIGIBLE"
    CAPPED = "CAPPED"


# User-facing text, shown verbatim by the client.
ERROR_MESSAGES = {
    NonceError.INVALID: "Nonce is invalid or has already been used",
    NonceError.EXPIRED: "Nonce expired. Request a new one and sign again",
    ActivationError.NONCE_INVALID: "Nonce is invalid or has already been used",
    ActivationError.NONCE_EXPIRED: "Nonce expired. Request a new one and sign again",
    ActivationError.SIGNATURE_EXPIRED: "Signature timestamp is too old or in the future",
    ActivationError.SIGNATURE_INVALID: "Signature is invalid",
    AttributionError.AFFILIATE_NOT_FOUND: "Referral link is not valid",
    AttributionError.SELF_REFERRAL_REJECTED: "You cannot use your own referral link",
    AttributionError.CONFLICTING_BINDING: "Wallet is already attributed to a different referral link",
    CompletionError.MALFORMED_EVENT: "Event is missing affiliate or referral id",
    CompletionError.UNKNOWN_AFFILIATE: "Affiliate id is not mapped to a wallet",
    AffiliateError.INELIGIBLE: "Wallet does not meet the minimum qualifying balance",
    AffiliateError.PROVIDER_UNAVAILABLE: "Affiliate provisioning is not configured",
    AffiliateError.PROVIDER_ERROR: "Affiliate provisioning failed, try again later",
}


@dataclass
class Result:
    ok: bool
    value: Any = None
    error: enum.Enum | None = None
    # Operation-specific flags (already_bound, already_issued, ...).
    already: bool = False

    @classmethod
    def success(cls, value: Any = None, already: bool = False) -> "Result":
        return cls(ok=True, value=value, already=already)

    @classmethod
    def failure(cls, error: enum.Enum) -> "Result":
        return cls(ok=False, error=error)

    @property
    def code(self) -> str | None:
        return self.error.value if self.error is not None else None

    @property
    def message(self) -> str | None:
        if self.error is None:
            return None
        return ERROR_MESSAGES.get(self.error, self.error.value)
