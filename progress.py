"""Read-only referral progress for the client.

GET /api/referral-progress/<wallet>

Counts come from webhook-confirmed conversions only; nothing here writes.
"""

from flask import Blueprint, jsonify

import signatures
from completions import count_completed
from multiplier import MAX_BONUS_REFERRALS, calculate

progress_api = Blueprint("progress_api", __name__)


def get_progress(wallet: str) -> dict:
    completed = count_completed(wallet)
    return {
        "completed_referrals": completed,
        "max_referrals": MAX_BONUS_REFERRALS,
        "multiplier": calculate(completed).to_dict(),
    }


@progress_api.get("/api/referral-progress/<wallet>")
def referral_progress(wallet: str):
    wallet = (wallet or "").strip()
    if not signatures.is_valid_address(wallet):
        return jsonify({"success": False, "error": "Invalid wallet"}), 400
    return jsonify({"success": True, "wallet": wallet, **get_progress(wallet)})
