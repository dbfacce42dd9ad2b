import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from finance_tracker import __version__
from finance_tracker.auth.crud import bootstrap_admin_if_needed
from finance_tracker.config import load_config
from finance_tracker.db import connect, get_app_config, init_db, set_app_config


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    with connect(cfg.DB_DSN) as conn:
        set_app_config(conn, "app_version", __version__)
        version = get_app_config(conn, "schema_version")

    boot = bootstrap_admin_if_needed(cfg)
    if boot:
        print(f"Bootstrapped admin: {boot['email']} (must change password at first sign-in)")

    print(f"DB initialized: {cfg.DB_DSN} (schema v{version})")


if __name__ == "__main__":
    main()
