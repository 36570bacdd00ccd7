"""Referral models: affiliate ids, attribution bindings and webhook conversions.

- wallet_affiliates: one affiliate id per wallet, immutable once issued.
- referral_attributions: keyed by referee wallet, first write wins.
- referral_conversions: keyed by the external referral id (idempotency key).
"""

from sqlalchemy import Column, DateTime, Index, String

from extensions import db, utcnow

CONVERSION_COUNTED = "counted"
CONVERSION_CAPPED = "capped"
CONVERSION_INELIGIBLE = "ineligible"

# Statuses that contribute to the raw completed-referrals count.
COUNTABLE_STATUSES = (CONVERSION_COUNTED, CONVERSION_CAPPED)


class WalletAffiliate(db.Model):
    __tablename__ = "wallet_affiliates"

    wallet = Column(String(44), primary_key=True)
    affiliate_id = Column(String(100), nullable=False, unique=True, index=True)
    referral_link = Column(String(500), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "wallet": self.wallet,
            "affiliate_id": self.affiliate_id,
            "referral_link": self.referral_link,
            "created_at": self.created_at.isoformat(),
        }


class ReferralAttribution(db.Model):
    __tablename__ = "referral_attributions"

    referee_wallet = Column(String(44), primary_key=True)
    referrer_wallet = Column(String(44), nullable=False, index=True)
    affiliate_id = Column(String(100), nullable=False, index=True)
    bound_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_attribution_referrer_bound", "referrer_wallet", "bound_at"),
    )

    def to_dict(self):
        return {
            "referee_wallet": self.referee_wallet,
            "referrer_wallet": self.referrer_wallet,
            "affiliate_id": self.affiliate_id,
            "bound_at": self.bound_at.isoformat(),
        }


class ReferralConversion(db.Model):
    __tablename__ = "referral_conversions"

    referral_id = Column(String(100), primary_key=True)
    referrer_wallet = Column(String(44), nullable=False, index=True)
    referee_wallet = Column(String(44), nullable=True)
    affiliate_id = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=CONVERSION_COUNTED)  # counted / capped / ineligible
    converted_at = Column(DateTime, nullable=False)
    processed_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_conversions_referrer_status", "referrer_wallet", "status"),
    )

    def to_dict(self):
        return {
            "referral_id": self.referral_id,
            "referrer_wallet": self.referrer_wallet,
            "referee_wallet": self.referee_wallet,
            "affiliate_id": self.affiliate_id,
            "status": self.status,
            "converted_at": self.converted_at.isoformat(),
            "processed_at": self.processed_at.isoformat(),
        }
