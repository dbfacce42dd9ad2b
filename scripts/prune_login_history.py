import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from finance_tracker.admin.login_history import prune_login_history
from finance_tracker.config import load_config
from finance_tracker.db import connect


def main() -> None:
    cfg = load_config()
    p = argparse.ArgumentParser(description="Delete login history records older than the retention window.")
    p.add_argument(
        "--hours",
        type=int,
        default=cfg.LOGIN_HISTORY_RETENTION_HOURS,
        help="Retention window in hours (default from config)",
    )
    args = p.parse_args()

    with connect(cfg.DB_DSN) as conn:
        n = prune_login_history(conn, retention_hours=args.hours)

    print(f"Deleted {n} login history record(s) older than {args.hours}h")


if __name__ == "__main__":
    main()
