"""Therapy Roleplay: dev launcher. Starts the API backend with uvicorn."""

import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def main():
    parser = argparse.ArgumentParser(description="Therapy Roleplay dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--no-reload", action="store_true",
                        help="Run without watching for code changes")
    args = parser.parse_args()

    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log = logging.getLogger("main")

    # Build env for the subprocess so the backend picks up the same data dir
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())

    cmd = [
        sys.executable, "-m", "uvicorn", "backend.app:app",
        "--host", HOST, "--port", BACKEND_PORT, "--log-level", LOG_LEVEL.lower(),
    ]
    if not args.no_reload:
        cmd.append("--reload")

    log.info("Starting backend on http://localhost:%s ...", BACKEND_PORT)
    proc = subprocess.Popen(cmd, cwd=ROOT, env=env)
    try:
        proc.wait()
    except KeyboardInterrupt:
        log.info("Shutting down...")
        proc.terminate()
        proc.wait()


if __name__ == "__main__":
    main()
