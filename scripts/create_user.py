"""Create an account the same way the admin gateway does.

Usage:
  python scripts/create_user.py --email alice@example.com --full-name Alice --role user

Prints the one-time temporary password. The user must change it at first
sign-in.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from finance_tracker.admin.gateway import GatewayError, create_user_account
from finance_tracker.config import load_config
from finance_tracker.db import connect, init_db


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--email", required=True)
    ap.add_argument("--full-name", default=None)
    ap.add_argument("--role", choices=["user", "admin"], default="user")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    try:
        with connect(cfg.DB_DSN) as conn:
            u, temp_password = create_user_account(
                conn,
                email=args.email,
                full_name=args.full_name,
                role=args.role,
                created_by=None,
            )
    except GatewayError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    print("Created user:")
    print(u)
    print(f"Temporary password (shown once): {temp_password}")


if __name__ == "__main__":
    main()
