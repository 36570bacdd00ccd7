"""Wallet ownership models (challenge nonces + activation records).

Wallets are Solana base58 addresses (32-44 chars), so wallet columns are String(44).
"""

from sqlalchemy import Column, DateTime, Index, Integer, String

from extensions import db, utcnow


class WalletNonce(db.Model):
    """Single-use challenge token. The row is deleted when consumed or swept."""

    __tablename__ = "wallet_nonces"

    nonce = Column(String(64), primary_key=True)
    issued_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_wallet_nonces_expires_at", "expires_at"),
    )

    def to_dict(self):
        return {
            "nonce": self.nonce,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


class WalletActivation(db.Model):
    __tablename__ = "wallet_activations"

    wallet = Column(String(44), primary_key=True)
    activated_at = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    activation_count = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_wallet_activations_activated_at", "activated_at"),
    )

    def to_dict(self):
        return {
            "wallet": self.wallet,
            "activated_at": self.activated_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "activation_count": int(self.activation_count or 0),
        }
