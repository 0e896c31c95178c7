import argparse
import sys

from safescan.features.scan.services.credits.ledger import CreditLedger
from safescan.platform.config import settings
from safescan.platform.db.session import create_session_factory


def grant_credits(user_id: str, amount: int) -> int:
    session_factory = create_session_factory(settings.DATABASE_URL, create_tables=True)
    granted = CreditLedger(session_factory).add_credits(user_id, amount)
    if granted.is_err():
        print(f"❌ Could not grant credits: {granted.error}")
        return 1
    print(f"✅ User {user_id} now has {granted.value.balance} credits")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Top up a user's scan credits")
    parser.add_argument("user_id")
    parser.add_argument("amount", type=int)
    args = parser.parse_args()
    sys.exit(grant_credits(args.user_id, args.amount))
