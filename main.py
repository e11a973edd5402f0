"""Party Sheet Portal: dev launcher. Starts the API server in watch mode."""

import argparse
import logging
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13013")

logger = logging.getLogger("portal")


def seed(data_dir: Path | None) -> None:
    """Write an empty record per character if no store exists yet."""
    from partysheet.models import default_document
    from portal import storage
    from portal.config import Settings

    storage.init_storage(Settings.from_env(data_dir))
    store = storage.character_store()
    if store.exists():
        logger.info("Store %s already exists, not seeding", store.path)
        return
    if store.save(default_document(storage.settings().characters)):
        logger.info("Seeded %s", store.path)


def main():
    parser = argparse.ArgumentParser(description="Party Sheet Portal dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", default=PORT)
    parser.add_argument("--seed", action="store_true",
                        help="Create an empty character store before starting")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "info"))
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.seed:
        seed(args.data_dir)

    # Build env for the server process so it picks up the same data dir
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())

    logger.info("Starting API on http://localhost:%s ...", args.port)
    proc = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "portal.app:app", "--reload",
         "--host", args.host, "--port", str(args.port), "--log-level", args.log_level.lower()],
        cwd=ROOT, env=env,
    )

    def shutdown(*_):
        logger.info("Shutting down...")
        proc.terminate()
        proc.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)
    proc.wait()


if __name__ == "__main__":
    main()
