"""Pluggable eligibility gate ("does this wallet meet the minimum qualifying balance").

The core never talks to a chain node. A deployment plugs a checker into
app.config["ELIGIBILITY_CHECKER"]; when none is configured the gate is skipped.
A configured checker that errors or times out counts as "not eligible".
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from decimal import Decimal

from flask import current_app

# ---- Config ----
COLLABORATOR_TIMEOUT_SECONDS = float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "5"))


class CollaboratorTimeout(Exception):
    pass


def call_with_timeout(fn, *args, timeout: float | None = None):
    """Run a blocking collaborator call with an upper bound on how long we wait for it.

    Each call gets its own worker thread. A call that hangs past the timeout keeps
    only that thread busy; later calls never queue behind it.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="collaborator")
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout if timeout is not None else COLLABORATOR_TIMEOUT_SECONDS)
    except FutureTimeout as e:
        raise CollaboratorTimeout(f"{getattr(fn, '__name__', 'call')} timed out") from e
    finally:
        executor.shutdown(wait=False)


class EligibilityChecker:
    """Contract for the external eligibility collaborator."""

    def is_eligible(self, wallet: str) -> bool:
        raise NotImplementedError


class MinimumBalanceEligibility(EligibilityChecker):
    """Spot-priced balance check: balance * price >= minimum_usd.

    `balance_lookup(wallet)` and `price_lookup()` are supplied by the deployment
    (RPC client, price feed); they are expected to raise on failure.
    """

    def __init__(self, balance_lookup, price_lookup, minimum_usd=Decimal("2")):
        self.balance_lookup = balance_lookup
        self.price_lookup = price_lookup
        self.minimum_usd = Decimal(str(minimum_usd))

    def is_eligible(self, wallet: str) -> bool:
        balance = Decimal(str(self.balance_lookup(wallet)))
        price = Decimal(str(self.price_lookup()))
        return balance * price >= self.minimum_usd


def configured_checker() -> EligibilityChecker | None:
    return current_app.config.get("ELIGIBILITY_CHECKER")


def check_eligibility(checker: EligibilityChecker | None, wallet: str | None) -> bool:
    """Fail-closed eligibility decision. Callers only invoke this when a checker is configured."""
    if checker is None:
        return True
    if not wallet:
        current_app.logger.info("[ELIGIBILITY] No wallet to check; treating as ineligible")
        return False
    try:
        eligible = bool(call_with_timeout(checker.is_eligible, wallet))
    except Exception:
        current_app.logger.exception("[ELIGIBILITY] Check failed for wallet=%s", wallet[:8] + "...")
        return False
    current_app.logger.info("[ELIGIBILITY] wallet=%s eligible=%s", wallet[:8] + "...", eligible)
    return eligible
