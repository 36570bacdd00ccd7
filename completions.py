"""Referral completion processing (affiliate-service webhook).

Route:
- POST /api/webhooks/rewardful

The webhook is the only way a referral becomes "completed"; the client can read
progress but never change it. Deliveries are idempotent on the external referral id
(primary key of referral_conversions), so a retried or duplicated delivery never
counts twice, even when two copies arrive at the same time.

The endpoint always answers 200 to genuine deliveries: the sender retries anything
else, and a retry cannot fix a payload we could not process. The real outcome is
logged.
"""

from __future__ import annotations

import hashlib
import hmac
import os
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from activation import MILLISECOND_THRESHOLD, short_wallet
from affiliates import resolve_affiliate
from eligibility import check_eligibility, configured_checker
from extensions import db, limiter, utcnow
from models_referral import (
    COUNTABLE_STATUSES,
    CONVERSION_CAPPED,
    CONVERSION_COUNTED,
    CONVERSION_INELIGIBLE,
    ReferralConversion,
)
from multiplier import MAX_BONUS_REFERRALS, Multiplier, calculate
from results import CompletionError, CompletionOutcome, Result

# ---- Config ----
REWARDFUL_WEBHOOK_SECRET = os.getenv("REWARDFUL_WEBHOOK_SECRET", "")

EVENT_REFERRAL_CONVERTED = "referral.converted"
EVENT_SALE_CREATED = "sale.created"

_STATUS_OUTCOME = {
    CONVERSION_COUNTED: CompletionOutcome.COUNTED,
    CONVERSION_CAPPED: CompletionOutcome.CAPPED,
    CONVERSION_INELIGIBLE: CompletionOutcome.INELIGIBLE,
}

webhooks_api = Blueprint("webhooks_api", __name__)


@dataclass
class Completion:
    outcome: CompletionOutcome
    referral_id: str
    referrer_wallet: str | None
    completed_referrals: int
    multiplier: Multiplier | None

    def to_dict(self):
        return {
            "outcome": self.outcome.value,
            "referral_id": self.referral_id,
            "referrer_wallet": self.referrer_wallet,
            "completed_referrals": self.completed_referrals,
            "multiplier": self.multiplier.to_dict() if self.multiplier else None,
        }


def _dig(payload, *path):
    cur = payload
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _text(value) -> str:
    if value is None or isinstance(value, (dict, list, bool)):
        return ""
    return str(value).strip()


def _parse_dt(value) -> datetime | None:
    """Parse ISO-ish datetimes ('2026-02-20T00:00:00Z', with offsets) or Unix seconds/milliseconds into naive UTC.

    Anything unparseable comes back as None; the caller falls back to the processing time.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts > MILLISECOND_THRESHOLD:
            ts = ts / 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)
        except (ValueError, OverflowError, OSError):
            return None
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def extract_fields(event: dict) -> dict:
    """Pull the fields we rely on out of a loosely-structured payload.

    The referee wallet is only read from the two explicit fields the affiliate link
    embeds; nothing is guessed from other metadata.
    """
    referee = _text(event.get("referee_wallet")) or _text(_dig(event, "referral", "metadata", "wallet"))
    return {
        "referral_id": _text(event.get("referral_id")) or _text(_dig(event, "referral", "id")) or _text(event.get("id")),
        "affiliate_id": _text(event.get("affiliate_id")) or _text(_dig(event, "affiliate", "id")),
        "converted_at": _parse_dt(
            event.get("converted_at") or _dig(event, "referral", "converted_at") or event.get("created_at")
        ),
        "referee_wallet": referee or None,
    }


def count_completed(referrer_wallet: str) -> int:
    """Raw completed-referral count (uncapped)."""
    return int(
        db.session.query(func.count(ReferralConversion.referral_id))
        .filter(
            ReferralConversion.referrer_wallet == referrer_wallet,
            ReferralConversion.status.in_(COUNTABLE_STATUSES),
        )
        .scalar()
        or 0
    )


def _already_processed(referral_id: str) -> Result:
    existing = db.session.get(ReferralConversion, referral_id)
    referrer = existing.referrer_wallet if existing else None
    count = count_completed(referrer) if referrer else 0
    current_app.logger.info("[REFERRAL-IGNORED-DUPLICATE] referral_id=%s", referral_id)
    return Result.success(
        Completion(
            outcome=CompletionOutcome.ALREADY_PROCESSED,
            referral_id=referral_id,
            referrer_wallet=referrer,
            completed_referrals=count,
            multiplier=calculate(count) if referrer else None,
        )
    )


def process(event: dict, eligibility=None, now: datetime | None = None) -> Result:
    """Record one external "referral converted" event."""
    if not isinstance(event, dict):
        event = {}
    fields = extract_fields(event)
    referral_id = fields["referral_id"]
    affiliate_id = fields["affiliate_id"]

    if not referral_id or not affiliate_id:
        current_app.logger.error(
            "[WEBHOOK] Malformed referral.converted (referral_id=%r affiliate_id=%r keys=%s)",
            referral_id,
            affiliate_id,
            sorted(event.keys()),
        )
        return Result.failure(CompletionError.MALFORMED_EVENT)

    if db.session.get(ReferralConversion, referral_id) is not None:
        return _already_processed(referral_id)

    referrer_wallet = resolve_affiliate(affiliate_id)
    if referrer_wallet is None:
        current_app.logger.error("[WEBHOOK] Affiliate id %s not mapped to a wallet", affiliate_id)
        return Result.failure(CompletionError.UNKNOWN_AFFILIATE)

    now = now or utcnow()
    if eligibility is not None and not check_eligibility(eligibility, fields["referee_wallet"]):
        status = CONVERSION_INELIGIBLE
    elif count_completed(referrer_wallet) >= MAX_BONUS_REFERRALS:
        status = CONVERSION_CAPPED
    else:
        status = CONVERSION_COUNTED

    db.session.add(
        ReferralConversion(
            referral_id=referral_id,
            referrer_wallet=referrer_wallet,
            referee_wallet=fields["referee_wallet"],
            affiliate_id=affiliate_id,
            status=status,
            converted_at=fields["converted_at"] or now,
            processed_at=now,
        )
    )
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent delivery of the same referral id won the insert.
        db.session.rollback()
        return _already_processed(referral_id)

    count = count_completed(referrer_wallet)
    multiplier = calculate(count)
    outcome = _STATUS_OUTCOME[status]
    if outcome is CompletionOutcome.CAPPED:
        current_app.logger.info(
            "[REFERRAL-LIMIT-REACHED] wallet=%s completed=%d", short_wallet(referrer_wallet), count
        )
    elif outcome is CompletionOutcome.INELIGIBLE:
        current_app.logger.info(
            "[REFERRAL-INELIGIBLE] wallet=%s referral_id=%s", short_wallet(referrer_wallet), referral_id
        )
    else:
        current_app.logger.info(
            "[REFERRAL-COMPLETED] wallet=%s successful_referrals=%d/%d allocation_multiplier=%dx",
            short_wallet(referrer_wallet),
            count,
            MAX_BONUS_REFERRALS,
            multiplier.total,
        )
    return Result.success(
        Completion(
            outcome=outcome,
            referral_id=referral_id,
            referrer_wallet=referrer_wallet,
            completed_referrals=count,
            multiplier=multiplier,
        )
    )


def _signature_ok(raw: bytes, provided: str) -> bool:
    expected = hmac.new(REWARDFUL_WEBHOOK_SECRET.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, (provided or "").strip().lower())


@webhooks_api.post("/api/webhooks/rewardful")
@limiter.exempt
def rewardful_webhook():
    raw = request.get_data(cache=True)
    if REWARDFUL_WEBHOOK_SECRET and not _signature_ok(raw, request.headers.get("X-Rewardful-Signature", "")):
        current_app.logger.warning("[WEBHOOK] Rejected delivery with bad signature")
        return jsonify({"success": False, "error": "Invalid signature"}), 401

    event_type = None
    try:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}
        event_type = payload.get("event") or payload.get("type")

        if event_type == EVENT_REFERRAL_CONVERTED:
            result = process(payload, eligibility=configured_checker())
            body = {"success": True, "event": event_type, "processed": result.ok}
            if result.ok:
                body["outcome"] = result.value.outcome.value
                body["message"] = "Referral processed"
            else:
                current_app.logger.warning("[WEBHOOK] referral.converted not processed code=%s", result.code)
                body["message"] = "Received"
            return jsonify(body)

        if event_type == EVENT_SALE_CREATED:
            current_app.logger.info(
                "[WEBHOOK] sale.created (logged only) sale_id=%s affiliate_id=%s",
                _dig(payload, "sale", "id"),
                _dig(payload, "affiliate", "id"),
            )
            return jsonify({"success": True, "event": event_type, "processed": False, "message": "Logged but not processed"})

        return jsonify({"success": True, "event": event_type, "processed": False, "message": "Event ignored"})
    except Exception:
        # Received but not fully processed; acknowledged anyway so the sender stops retrying.
        db.session.rollback()
        current_app.logger.exception("[WEBHOOK] Unhandled error processing %s", event_type)
        return jsonify({"success": True, "event": event_type, "processed": False, "message": "Error logged"})
