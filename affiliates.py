"""Affiliate ids (referral links) bound one-to-one to activated wallets.

Routes:
- POST /api/affiliates                   {wallet, message, signature, nonce, timestamp}
- GET  /api/affiliate-mapping/<wallet>

Minting ids is the affiliate service's job. The core only stores what the configured
provider (app.config["AFFILIATE_PROVIDER"]) returns; once stored, a wallet's id
never changes and repeat requests get the same id back.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

import signatures
from activation import authorize_request, error_response, short_wallet
from eligibility import call_with_timeout, check_eligibility, configured_checker
from extensions import db, limiter, utcnow
from models_referral import WalletAffiliate
from results import AffiliateError, Result

# ---- Config ----
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

affiliates_api = Blueprint("affiliates_api", __name__)


@dataclass
class ProvisionedAffiliate:
    affiliate_id: str
    referral_link: str | None = None


class AffiliateProvider:
    """Contract for the external affiliate-id provisioning service."""

    def create_affiliate(self, wallet: str) -> ProvisionedAffiliate:
        raise NotImplementedError


def default_referral_link(affiliate_id: str) -> str:
    return f"{FRONTEND_URL.rstrip('/')}?via={affiliate_id}"


def get_affiliate(wallet: str) -> WalletAffiliate | None:
    return db.session.get(WalletAffiliate, (wallet or "").strip())


def resolve_affiliate(affiliate_id: str) -> str | None:
    """affiliate_id -> owning wallet, or None if the id was never issued here."""
    affiliate_id = (affiliate_id or "").strip()
    if not affiliate_id:
        return None
    row = WalletAffiliate.query.filter_by(affiliate_id=affiliate_id).first()
    return row.wallet if row else None


def issue_affiliate(wallet: str, provider: AffiliateProvider | None, eligibility=None) -> Result:
    existing = get_affiliate(wallet)
    if existing is not None:
        return Result.success(existing, already=True)

    if eligibility is not None and not check_eligibility(eligibility, wallet):
        return Result.failure(AffiliateError.INELIGIBLE)

    if provider is None:
        current_app.logger.error("[CREATE-AFFILIATE] No affiliate provider configured")
        return Result.failure(AffiliateError.PROVIDER_UNAVAILABLE)

    try:
        provisioned = call_with_timeout(provider.create_affiliate, wallet)
    except Exception:
        current_app.logger.exception("[CREATE-AFFILIATE] Provider failed for wallet=%s", short_wallet(wallet))
        return Result.failure(AffiliateError.PROVIDER_ERROR)

    affiliate_id = str(getattr(provisioned, "affiliate_id", "") or "").strip()
    if not affiliate_id:
        current_app.logger.error("[CREATE-AFFILIATE] Provider returned no affiliate id for wallet=%s", short_wallet(wallet))
        return Result.failure(AffiliateError.PROVIDER_ERROR)

    binding = WalletAffiliate(
        wallet=wallet,
        affiliate_id=affiliate_id,
        referral_link=provisioned.referral_link or default_referral_link(affiliate_id),
        created_at=utcnow(),
    )
    db.session.add(binding)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = get_affiliate(wallet)
        if existing is not None:
            # Parallel request for the same wallet stored its id first; that one stands.
            return Result.success(existing, already=True)
        current_app.logger.error(
            "[CREATE-AFFILIATE] Affiliate id %s already bound to another wallet", affiliate_id
        )
        return Result.failure(AffiliateError.PROVIDER_ERROR)

    current_app.logger.info("[CREATE-AFFILIATE] wallet=%s affiliate_id=%s", short_wallet(wallet), affiliate_id)
    return Result.success(binding)


_STATUS = {
    AffiliateError.INELIGIBLE: 403,
    AffiliateError.PROVIDER_UNAVAILABLE: 503,
    AffiliateError.PROVIDER_ERROR: 502,
}


@affiliates_api.post("/api/affiliates")
@limiter.limit("10 per minute")
def create_affiliate():
    data = request.get_json(silent=True) or {}
    wallet, failure = authorize_request(data, signatures.ACTION_ISSUE_AFFILIATE_LINK)
    if failure is not None:
        return failure

    result = issue_affiliate(
        wallet,
        current_app.config.get("AFFILIATE_PROVIDER"),
        eligibility=configured_checker(),
    )
    if not result.ok:
        if result.error is AffiliateError.PROVIDER_ERROR:
            return jsonify({"success": False, "error": result.message, "code": result.code, "retryable": True}), 502
        return error_response(result, _STATUS[result.error])

    binding: WalletAffiliate = result.value
    return jsonify(
        {
            "success": True,
            "wallet": wallet,
            "affiliate_id": binding.affiliate_id,
            "referral_link": binding.referral_link,
            "already_issued": result.already,
        }
    )


@affiliates_api.get("/api/affiliate-mapping/<wallet>")
def affiliate_mapping(wallet: str):
    wallet = (wallet or "").strip()
    if not signatures.is_valid_address(wallet):
        return jsonify({"success": False, "error": "Invalid wallet"}), 400
    binding = get_affiliate(wallet)
    return jsonify(
        {
            "success": True,
            "wallet": wallet,
            "affiliate_id": binding.affiliate_id if binding else None,
            "referral_link": binding.referral_link if binding else None,
        }
    )
