"""Serve the Finance Tracker API with uvicorn.

Usage:
  python scripts/run_api.py --port 8000 --reload

Flags fall back to API_HOST / API_PORT / API_RELOAD.
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import uvicorn

APP_PATH = "finance_tracker.api.server:app"


def main() -> None:
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    ap.add_argument("--host", default=os.environ.get("API_HOST", "127.0.0.1"))
    ap.add_argument("--port", type=int, default=int(os.environ.get("API_PORT", "8000")))
    ap.add_argument(
        "--reload",
        action="store_true",
        default=os.environ.get("API_RELOAD", "").strip().lower() in ("1", "true", "yes"),
        help="restart on source changes (development only)",
    )
    args = ap.parse_args()

    print(f"[api] serving {APP_PATH} on http://{args.host}:{args.port}")
    uvicorn.run(APP_PATH, host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
