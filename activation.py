"""Wallet activation: nonce + signature proof of ownership.

Routes:
- GET/POST /api/nonce          issue a single-use challenge nonce
- POST     /api/verify-wallet  {wallet, message, signature, nonce, timestamp}

There is no login session. Every privileged endpoint (affiliate link, referral
attribution) calls `authorize_request` with the signed proof from its own request
body, so activation is re-proven on every call and a client-side "already signed"
flag is never trusted.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

import nonces
import signatures
from extensions import db, limiter, utcnow
from models_activation import WalletActivation
from results import ActivationError, NonceError, Result

# ---- Config ----
SIGNATURE_MAX_AGE_SECONDS = int(os.getenv("SIGNATURE_MAX_AGE_SECONDS", "300"))

# Browser clients send Date.now() (milliseconds); anything this large is not seconds.
MILLISECOND_THRESHOLD = 10 ** 11

_NONCE_TO_ACTIVATION = {
    NonceError.INVALID: ActivationError.NONCE_INVALID,
    NonceError.EXPIRED: ActivationError.NONCE_EXPIRED,
}

activation_api = Blueprint("activation_api", __name__)


def short_wallet(wallet: str) -> str:
    return (wallet or "")[:8] + "..."


def _timestamp_seconds(timestamp) -> float | None:
    if isinstance(timestamp, bool):
        return None
    try:
        ts = float(timestamp)
    except (TypeError, ValueError):
        return None
    if ts > MILLISECOND_THRESHOLD:
        ts = ts / 1000.0
    return ts


def is_timestamp_fresh(timestamp, now: datetime) -> bool:
    ts = _timestamp_seconds(timestamp)
    if ts is None:
        return False
    now_ts = now.replace(tzinfo=timezone.utc).timestamp()
    age = now_ts - ts
    return 0 <= age <= SIGNATURE_MAX_AGE_SECONDS


def _upsert_activation(wallet: str, now: datetime) -> WalletActivation:
    record = db.session.get(WalletActivation, wallet)
    if record is None:
        record = WalletActivation(wallet=wallet, activated_at=now, created_at=now, activation_count=1)
        db.session.add(record)
        try:
            db.session.commit()
            return record
        except IntegrityError:
            # A parallel activation of the same wallet inserted first.
            db.session.rollback()
            record = db.session.get(WalletActivation, wallet)
    record.activated_at = now
    record.activation_count = int(record.activation_count or 0) + 1
    db.session.commit()
    return record


def activate(
    wallet: str,
    message: str,
    signature,
    nonce: str,
    timestamp,
    action: str = signatures.ACTION_VALIDATE_HOLDINGS,
    affiliate_id: str | None = None,
    now: datetime | None = None,
) -> Result:
    """Prove wallet ownership for the current request.

    Order matters: the nonce is consumed first so a request that fails any later
    check has still burned its nonce.
    """
    consumed = nonces.consume(nonce, now=now)
    if not consumed.ok:
        current_app.logger.warning(
            "[WALLET-AUTH-FAILED] wallet=%s reason=%s", short_wallet(wallet), consumed.code
        )
        return Result.failure(_NONCE_TO_ACTIVATION[consumed.error])

    now = now or utcnow()
    if not is_timestamp_fresh(timestamp, now):
        current_app.logger.warning(
            "[WALLET-AUTH-FAILED] wallet=%s reason=SIGNATURE_EXPIRED timestamp=%s", short_wallet(wallet), timestamp
        )
        return Result.failure(ActivationError.SIGNATURE_EXPIRED)

    expected = signatures.build_message(action, wallet, timestamp, nonce, affiliate_id=affiliate_id)
    if message is not None and message != expected:
        current_app.logger.warning(
            "[WALLET-AUTH-FAILED] wallet=%s reason=SIGNATURE_INVALID detail=message mismatch", short_wallet(wallet)
        )
        return Result.failure(ActivationError.SIGNATURE_INVALID)

    if not signatures.verify(expected.encode("utf-8"), signature, wallet):
        current_app.logger.warning("[WALLET-AUTH-FAILED] wallet=%s reason=SIGNATURE_INVALID", short_wallet(wallet))
        return Result.failure(ActivationError.SIGNATURE_INVALID)

    record = _upsert_activation(wallet, now)
    current_app.logger.info(
        "[WALLET-AUTH-VERIFIED] wallet=%s action=%s activations=%s", short_wallet(wallet), action, record.activation_count
    )
    return Result.success(record)


def error_response(result: Result, status: int):
    return jsonify({"success": False, "error": result.message, "code": result.code}), status


def authorize_request(data: dict, action: str, affiliate_id: str | None = None):
    """Run the activation gate for a privileged request body.

    Returns (wallet, None) on success, otherwise (None, response) where response is
    a ready-to-return Flask response tuple.
    """
    wallet = (data.get("wallet") or "").strip()
    if not signatures.is_valid_address(wallet):
        return None, (jsonify({"success": False, "error": "Invalid wallet"}), 400)

    missing = [k for k in ("message", "signature", "nonce", "timestamp") if data.get(k) in (None, "")]
    if missing:
        return None, (
            jsonify({"success": False, "error": "Missing required fields: " + ", ".join(missing)}),
            400,
        )

    result = activate(
        wallet,
        data.get("message"),
        data.get("signature"),
        str(data.get("nonce")),
        data.get("timestamp"),
        action=action,
        affiliate_id=affiliate_id,
    )
    if not result.ok:
        return None, error_response(result, 401)
    return wallet, None


@activation_api.route("/api/nonce", methods=["GET", "POST"])
@limiter.limit("30 per minute")
def get_nonce():
    issued = nonces.issue()
    return jsonify({"success": True, **issued.to_dict()})


@activation_api.post("/api/verify-wallet")
@limiter.limit("10 per minute")
def verify_wallet():
    data = request.get_json(silent=True) or {}
    wallet, failure = authorize_request(data, signatures.ACTION_VALIDATE_HOLDINGS)
    if failure is not None:
        return failure

    record = db.session.get(WalletActivation, wallet)
    current_app.logger.info("[SESSION-ACTIVE] wallet=%s privileges=affiliate_access", short_wallet(wallet))
    return jsonify({"success": True, "wallet": wallet, "activated_at": record.activated_at.isoformat()})
