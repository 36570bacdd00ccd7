"""Challenge nonces for wallet signature login.

Nonces live only in the database: a token is consumed by a conditional DELETE and
whoever removes the row wins, so two concurrent requests (even on different
processes) can never both succeed with the same token.
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import delete, select

from extensions import db, utcnow
from models_activation import WalletNonce
from results import NonceError, Result

# ---- Config ----
NONCE_TTL_MINUTES = int(os.getenv("NONCE_TTL_MINUTES", "5"))


@dataclass
class Nonce:
    value: str
    issued_at: datetime
    expires_at: datetime

    def to_dict(self):
        return {
            "nonce": self.value,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


def _short(value: str) -> str:
    return (value or "")[:8] + "..."


def issue(now: datetime | None = None) -> Nonce:
    now = now or utcnow()
    value = secrets.token_hex(16)
    expires_at = now + timedelta(minutes=NONCE_TTL_MINUTES)
    db.session.add(WalletNonce(nonce=value, issued_at=now, expires_at=expires_at))
    db.session.commit()
    current_app.logger.info("[NONCE] Issued %s expires_at=%s", _short(value), expires_at.isoformat())
    return Nonce(value=value, issued_at=now, expires_at=expires_at)


def consume(value: str, now: datetime | None = None) -> Result:
    """Consume a nonce exactly once.

    The row is deleted as soon as it is looked up, whatever happens next: an expired
    token is reported as EXPIRED and a token that fails the later signature check
    cannot be retried.
    """
    value = (value or "").strip()
    if not value:
        return Result.failure(NonceError.INVALID)

    expires_at = db.session.execute(
        select(WalletNonce.expires_at).where(WalletNonce.nonce == value)
    ).scalar_one_or_none()
    if expires_at is None:
        current_app.logger.warning("[NONCE-VALIDATE] Unknown or used nonce %s", _short(value))
        return Result.failure(NonceError.INVALID)

    deleted = db.session.execute(
        delete(WalletNonce).where(WalletNonce.nonce == value)
    ).rowcount
    db.session.commit()
    if not deleted:
        # Lost the race against a concurrent consumer.
        current_app.logger.warning("[NONCE-VALIDATE] Replay detected for nonce %s", _short(value))
        return Result.failure(NonceError.INVALID)

    now = now or utcnow()
    if now > expires_at:
        current_app.logger.warning("[NONCE-VALIDATE] Expired nonce %s", _short(value))
        return Result.failure(NonceError.EXPIRED)

    return Result.success()


def sweep_expired(now: datetime | None = None) -> int:
    """Delete every expired nonce. Returns the number of rows removed."""
    now = now or utcnow()
    removed = db.session.execute(
        delete(WalletNonce).where(WalletNonce.expires_at < now)
    ).rowcount
    db.session.commit()
    current_app.logger.info("[NONCE-SWEEP] Removed %d expired nonces", removed or 0)
    return int(removed or 0)
