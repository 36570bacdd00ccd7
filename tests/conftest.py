"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
import tempfile
from pathlib import Path

# Minimal environment before app.py is imported (it reads config at import time).
_tmp_dir = tempfile.mkdtemp(prefix="referral-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_tmp_dir}/test.db")
os.environ.setdefault("RATELIMIT_ENABLED", "0")
os.environ.setdefault("SECRET_KEY", "test_secret_key_for_testing_only")
os.environ.setdefault("FRONTEND_URL", "https://referral.example")

# Add the project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import base64
import time

import base58
import pytest
from nacl.signing import SigningKey
from sqlalchemy.orm import Session

from app import app as flask_app
from affiliates import AffiliateProvider, ProvisionedAffiliate
from eligibility import EligibilityChecker
from extensions import db, utcnow
from models_referral import WalletAffiliate
import nonces
import signatures


class WalletSigner:
    """A throwaway Solana-style wallet: ed25519 key + base58 address."""

    def __init__(self):
        self.key = SigningKey.generate()
        self.wallet = base58.b58encode(bytes(self.key.verify_key)).decode("ascii")

    def sign(self, message: str) -> str:
        return base64.b64encode(self.key.sign(message.encode("utf-8")).signature).decode("ascii")

    def proof(self, nonce: str, action: str, affiliate_id=None, timestamp=None, wallet=None) -> dict:
        """Request body for any signed endpoint."""
        wallet = wallet or self.wallet
        timestamp = int(time.time()) if timestamp is None else timestamp
        message = signatures.build_message(action, wallet, timestamp, nonce, affiliate_id=affiliate_id)
        body = {
            "wallet": wallet,
            "message": message,
            "signature": self.sign(message),
            "nonce": nonce,
            "timestamp": timestamp,
        }
        if affiliate_id is not None:
            body["affiliate_id"] = affiliate_id
        return body


class FakeAffiliateProvider(AffiliateProvider):
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def create_affiliate(self, wallet):
        self.calls.append(wallet)
        if self.fail:
            raise RuntimeError("affiliate service down")
        affiliate_id = f"aff_{len(self.calls)}_{wallet[:6]}"
        return ProvisionedAffiliate(affiliate_id=affiliate_id, referral_link=f"https://referral.example?via={affiliate_id}")


class StaticEligibility(EligibilityChecker):
    def __init__(self, answer=True, error=None):
        self.answer = answer
        self.error = error
        self.checked = []

    def is_eligible(self, wallet):
        self.checked.append(wallet)
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, AFFILIATE_PROVIDER=None, ELIGIBILITY_CHECKER=None)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signer():
    return WalletSigner()


@pytest.fixture
def other_signer():
    return WalletSigner()


@pytest.fixture
def third_signer():
    return WalletSigner()


@pytest.fixture
def provider(app):
    p = FakeAffiliateProvider()
    app.config["AFFILIATE_PROVIDER"] = p
    return p


@pytest.fixture
def fresh_nonce(app):
    def _issue():
        return nonces.issue().value
    return _issue


@pytest.fixture
def bind_affiliate(app):
    """Store an affiliate id for a wallet directly (bypasses the provider)."""
    def _bind(wallet, affiliate_id):
        db.session.add(
            WalletAffiliate(
                wallet=wallet,
                affiliate_id=affiliate_id,
                referral_link=f"https://referral.example?via={affiliate_id}",
                created_at=utcnow(),
            )
        )
        db.session.commit()
        return affiliate_id
    return _bind


@pytest.fixture
def make_eligibility():
    return StaticEligibility


@pytest.fixture
def make_provider():
    return FakeAffiliateProvider


@pytest.fixture
def lose_race(app, monkeypatch):
    """Simulate a concurrent writer.

    The next db.session.get(model, ...) misses, and `row` is committed from a separate
    session at that moment, so the caller's own insert then hits the primary key.
    """
    real_get = db.session.get

    def _arm(model, row):
        pending = [row]

        def racing_get(entity, ident, *args, **kwargs):
            if pending and entity is model:
                with Session(db.engine) as other:
                    other.add(pending.pop())
                    other.commit()
                return None
            return real_get(entity, ident, *args, **kwargs)

        monkeypatch.setattr(db.session, "get", racing_get)

    return _arm
