"""Referral attribution ledger (referee -> referrer).

Routes:
- POST /api/referrals/attribute   {wallet, affiliate_id, message, signature, nonce, timestamp}
- GET  /api/attribution/<wallet>  who referred this wallet
- GET  /api/referrals/<wallet>    wallets this wallet referred

Rules:
- First attribution wins and is never overwritten (referee_wallet is the primary key).
- Self-referrals are rejected before anything is written.
- Re-submitting the same link is a harmless no-op (already_bound).
"""

from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

import signatures
from activation import authorize_request, error_response, short_wallet
from affiliates import resolve_affiliate
from extensions import db, limiter, utcnow
from models_referral import ReferralAttribution
from results import AttributionError, Result

attribution_api = Blueprint("attribution_api", __name__)


def get_attribution(wallet: str) -> ReferralAttribution | None:
    return db.session.get(ReferralAttribution, (wallet or "").strip())


def list_referees(referrer_wallet: str) -> list[ReferralAttribution]:
    return (
        ReferralAttribution.query.filter_by(referrer_wallet=(referrer_wallet or "").strip())
        .order_by(ReferralAttribution.bound_at.asc())
        .all()
    )


def _existing_outcome(existing: ReferralAttribution, affiliate_id: str) -> Result:
    if existing.affiliate_id == affiliate_id:
        return Result.success(existing, already=True)
    current_app.logger.warning(
        "[ATTRIBUTION] Conflicting link for referee=%s (bound=%s, requested=%s)",
        short_wallet(existing.referee_wallet),
        existing.affiliate_id,
        affiliate_id,
    )
    return Result.failure(AttributionError.CONFLICTING_BINDING)


def bind(referee_wallet: str, affiliate_id: str, now: datetime | None = None) -> Result:
    """Bind an (already activated) referee to the owner of `affiliate_id`."""
    referee_wallet = (referee_wallet or "").strip()
    affiliate_id = (affiliate_id or "").strip()

    referrer_wallet = resolve_affiliate(affiliate_id)
    if referrer_wallet is None:
        return Result.failure(AttributionError.AFFILIATE_NOT_FOUND)

    if referrer_wallet == referee_wallet:
        current_app.logger.warning("[ATTRIBUTION] Self-referral rejected wallet=%s", short_wallet(referee_wallet))
        return Result.failure(AttributionError.SELF_REFERRAL_REJECTED)

    existing = get_attribution(referee_wallet)
    if existing is not None:
        return _existing_outcome(existing, affiliate_id)

    record = ReferralAttribution(
        referee_wallet=referee_wallet,
        referrer_wallet=referrer_wallet,
        affiliate_id=affiliate_id,
        bound_at=now or utcnow(),
    )
    db.session.add(record)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request bound this referee first.
        db.session.rollback()
        return _existing_outcome(get_attribution(referee_wallet), affiliate_id)

    current_app.logger.info(
        "[ATTRIBUTION] referee=%s referrer=%s affiliate_id=%s",
        short_wallet(referee_wallet),
        short_wallet(referrer_wallet),
        affiliate_id,
    )
    return Result.success(record)


_STATUS = {
    AttributionError.AFFILIATE_NOT_FOUND: 404,
    AttributionError.SELF_REFERRAL_REJECTED: 400,
    AttributionError.CONFLICTING_BINDING: 409,
}


@attribution_api.post("/api/referrals/attribute")
@limiter.limit("10 per minute")
def attribute_referral():
    data = request.get_json(silent=True) or {}
    affiliate_id = (data.get("affiliate_id") or "").strip()
    if not affiliate_id:
        return jsonify({"success": False, "error": "affiliate_id is required"}), 400

    wallet, failure = authorize_request(data, signatures.ACTION_ATTRIBUTE_REFERRAL, affiliate_id=affiliate_id)
    if failure is not None:
        return failure

    result = bind(wallet, affiliate_id)
    if not result.ok:
        return error_response(result, _STATUS[result.error])

    record: ReferralAttribution = result.value
    return jsonify({"success": True, "already_bound": result.already, **record.to_dict()})


@attribution_api.get("/api/attribution/<wallet>")
def attribution_for_wallet(wallet: str):
    wallet = (wallet or "").strip()
    if not signatures.is_valid_address(wallet):
        return jsonify({"success": False, "error": "Invalid wallet"}), 400
    record = get_attribution(wallet)
    return jsonify(
        {
            "success": True,
            "wallet": wallet,
            "referrer": record.referrer_wallet if record else None,
            "affiliate_id": record.affiliate_id if record else None,
            "bound_at": record.bound_at.isoformat() if record else None,
        }
    )


@attribution_api.get("/api/referrals/<wallet>")
def referrals_for_wallet(wallet: str):
    wallet = (wallet or "").strip()
    if not signatures.is_valid_address(wallet):
        return jsonify({"success": False, "error": "Invalid wallet"}), 400
    referees = list_referees(wallet)
    return jsonify(
        {
            "success": True,
            "wallet": wallet,
            "total": len(referees),
            "referees": [r.referee_wallet for r in referees],
        }
    )
