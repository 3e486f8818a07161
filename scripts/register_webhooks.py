#!/usr/bin/env python3
"""
Point every business's Telegram bot at this deployment.
Usage: python scripts/register_webhooks.py [public_base_url]
"""

import sys

from botlocal.config import settings
from botlocal.database import SessionLocal
from botlocal.models import Business
from botlocal.services.dispatch_service import Dispatcher


def main():
    base_url = sys.argv[1] if len(sys.argv) > 1 else settings.public_base_url
    if not base_url:
        print("Missing PUBLIC_BASE_URL (env var or first argument)", file=sys.stderr)
        sys.exit(1)

    dispatcher = Dispatcher()
    db = SessionLocal()
    failures = 0
    try:
        businesses = db.query(Business).filter(Business.telegram_bot_token.isnot(None)).all()
        for business in businesses:
            result = dispatcher.register_telegram_webhook(business, base_url=base_url)
            if result.ok:
                print(f"OK    {business.name}: {result.value}")
            else:
                failures += 1
                print(f"FAIL  {business.name}: {result.error}")
    finally:
        db.close()

    print(f"Registered {len(businesses) - failures}/{len(businesses)} bots")
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
