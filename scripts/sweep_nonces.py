#!/usr/bin/env python3
"""Delete expired wallet challenge nonces.

Intended to be run from a scheduler (e.g., Render Cron) every few minutes.
Consumed nonces are already deleted on use; this only clears ones nobody signed.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import app  # noqa: E402
import nonces  # noqa: E402


def main():
    with app.app_context():
        removed = nonces.sweep_expired()

    print({
        "ok": True,
        "removed": removed,
    })


if __name__ == "__main__":
    main()
