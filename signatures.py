"""Solana (ed25519) wallet signature helpers.

Wallet adapters sign the UTF-8 bytes of a plain-text challenge and return a raw
64-byte signature, which the browser sends base64 encoded. The wallet address is the
base58 encoding of the 32-byte ed25519 public key.

Everything here is pure and fails closed: bad input returns False, it never raises.
"""

from __future__ import annotations

import base64

import base58
from nacl.signing import VerifyKey

ACTION_VALIDATE_HOLDINGS = "ValidateHoldings"
ACTION_ISSUE_AFFILIATE_LINK = "IssueAffiliateLink"
ACTION_ATTRIBUTE_REFERRAL = "AttributeReferral"

PUBLIC_KEY_BYTES = 32
SIGNATURE_BYTES = 64


def decode_public_key(address: str) -> bytes | None:
    if not isinstance(address, str) or not address.strip():
        return None
    try:
        raw = base58.b58decode(address.strip())
    except Exception:
        return None
    if len(raw) != PUBLIC_KEY_BYTES:
        return None
    return raw


def is_valid_address(address: str) -> bool:
    return decode_public_key(address) is not None


def decode_signature(signature) -> bytes | None:
    if isinstance(signature, (bytes, bytearray)):
        if len(signature) == SIGNATURE_BYTES:
            return bytes(signature)
        try:
            signature = bytes(signature).decode("ascii")
        except UnicodeDecodeError:
            return None
    if not isinstance(signature, str) or not signature.strip():
        return None
    try:
        raw = base64.b64decode(signature.strip(), validate=True)
    except Exception:
        return None
    if len(raw) != SIGNATURE_BYTES:
        return None
    return raw


def build_message(action: str, wallet: str, timestamp, nonce: str, affiliate_id: str | None = None) -> str:
    """Rebuild the exact challenge text the client signed (no trailing newline)."""
    lines = [f"Action: {action}", f"Wallet: {wallet}"]
    if affiliate_id is not None:
        lines.append(f"AffiliateID: {affiliate_id}")
    lines.append(f"Timestamp: {timestamp}")
    lines.append(f"Nonce: {nonce}")
    return "\n".join(lines)


def verify(message, signature, public_key: str) -> bool:
    """Return True only if `signature` is a valid ed25519 signature of `message` by `public_key`."""
    try:
        if isinstance(message, str):
            message = message.encode("utf-8")
        if not isinstance(message, (bytes, bytearray)) or not message:
            return False
        key_bytes = decode_public_key(public_key)
        sig_bytes = decode_signature(signature)
        if key_bytes is None or sig_bytes is None:
            return False
        VerifyKey(key_bytes).verify(bytes(message), sig_bytes)
        return True
    except Exception:
        # BadSignatureError, malformed keys, decode errors: all a plain "no".
        return False
