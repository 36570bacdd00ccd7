"""Tests for wallet activation (signed nonce proof of ownership)."""

import time

import pytest

import activation
import signatures
from extensions import db
from models_activation import WalletActivation
from results import ActivationError


def _is_activated(wallet):
    return db.session.get(WalletActivation, wallet) is not None


def _activate(signer, nonce, **overrides):
    body = signer.proof(nonce, signatures.ACTION_VALIDATE_HOLDINGS, timestamp=overrides.pop("timestamp", None))
    body.update(overrides)
    return activation.activate(
        body["wallet"], body["message"], body["signature"], body["nonce"], body["timestamp"]
    )


class TestActivate:
    def test_valid_proof_activates(self, app, signer, fresh_nonce):
        result = _activate(signer, fresh_nonce())

        assert result.ok is True
        assert result.value.wallet == signer.wallet
        assert _is_activated(signer.wallet) is True

    def test_activation_is_idempotent(self, app, signer, fresh_nonce):
        assert _activate(signer, fresh_nonce()).ok
        assert _activate(signer, fresh_nonce()).ok

        rows = WalletActivation.query.filter_by(wallet=signer.wallet).all()
        assert len(rows) == 1
        assert rows[0].activation_count == 2

    def test_reused_nonce_rejected(self, app, signer, fresh_nonce):
        nonce = fresh_nonce()
        assert _activate(signer, nonce).ok

        result = _activate(signer, nonce)
        assert result.ok is False
        assert result.error is ActivationError.NONCE_INVALID

    def test_unknown_nonce_rejected(self, app, signer):
        result = _activate(signer, "0" * 32)
        assert result.error is ActivationError.NONCE_INVALID
        assert _is_activated(signer.wallet) is False

    @pytest.mark.parametrize("offset", [-301, -3600, 60])
    def test_stale_or_future_timestamp_rejected(self, app, signer, fresh_nonce, offset):
        result = _activate(signer, fresh_nonce(), timestamp=int(time.time()) + offset)
        assert result.error is ActivationError.SIGNATURE_EXPIRED

    def test_millisecond_timestamp_accepted(self, app, signer, fresh_nonce):
        result = _activate(signer, fresh_nonce(), timestamp=int(time.time() * 1000))
        assert result.ok is True

    def test_bad_signature_still_burns_nonce(self, app, signer, other_signer, fresh_nonce):
        nonce = fresh_nonce()
        forged = other_signer.proof(nonce, signatures.ACTION_VALIDATE_HOLDINGS, wallet=signer.wallet)

        first = activation.activate(
            forged["wallet"], forged["message"], forged["signature"], nonce, forged["timestamp"]
        )
        assert first.error is ActivationError.SIGNATURE_INVALID

        # The legitimate owner cannot reuse the burned nonce.
        retry = _activate(signer, nonce)
        assert retry.error is ActivationError.NONCE_INVALID
        assert _is_activated(signer.wallet) is False

    def test_message_must_match_server_layout(self, app, signer, fresh_nonce):
        nonce = fresh_nonce()
        ts = int(time.time())
        message = f"Please sign in\nWallet: {signer.wallet}\nNonce: {nonce}"

        result = activation.activate(signer.wallet, message, signer.sign(message), nonce, ts)
        assert result.error is ActivationError.SIGNATURE_INVALID

    def test_signature_for_other_action_rejected(self, app, signer, fresh_nonce):
        nonce = fresh_nonce()
        body = signer.proof(nonce, signatures.ACTION_ATTRIBUTE_REFERRAL)

        result = activation.activate(
            body["wallet"], body["message"], body["signature"], nonce, body["timestamp"],
            action=signatures.ACTION_VALIDATE_HOLDINGS,
        )
        assert result.error is ActivationError.SIGNATURE_INVALID


class TestVerifyWalletEndpoint:
    def _nonce(self, client):
        return client.get("/api/nonce").get_json()["nonce"]

    def test_verify_wallet_success(self, client, signer):
        body = signer.proof(self._nonce(client), signatures.ACTION_VALIDATE_HOLDINGS)

        resp = client.post("/api/verify-wallet", json=body)

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["wallet"] == signer.wallet
        assert data["activated_at"]

    def test_replay_rejected(self, client, signer):
        body = signer.proof(self._nonce(client), signatures.ACTION_VALIDATE_HOLDINGS)
        assert client.post("/api/verify-wallet", json=body).status_code == 200

        resp = client.post("/api/verify-wallet", json=body)
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "NONCE_INVALID"

    def test_invalid_wallet(self, client):
        resp = client.post("/api/verify-wallet", json={"wallet": "not-a-wallet"})
        assert resp.status_code == 400
        assert resp.get_json()["success"] is False

    def test_missing_fields(self, client, signer):
        resp = client.post("/api/verify-wallet", json={"wallet": signer.wallet, "nonce": "abc"})
        assert resp.status_code == 400
        assert "signature" in resp.get_json()["error"]

    def test_bad_signature(self, client, signer):
        body = signer.proof(self._nonce(client), signatures.ACTION_VALIDATE_HOLDINGS)
        body["signature"] = body["signature"][::-1]

        resp = client.post("/api/verify-wallet", json=body)

        assert resp.status_code == 401
        assert resp.get_json()["code"] == "SIGNATURE_INVALID"
        assert db.session.get(WalletActivation, signer.wallet) is None
