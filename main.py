"""RPG Arena — dev launcher. Starts the API server in watch mode."""

import argparse
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13015")


def main():
    parser = argparse.ArgumentParser(description="RPG Arena dev launcher")
    parser.add_argument("--port", default=PORT, help=f"API port (default: {PORT})")
    parser.add_argument("--provider", choices=["openai", "anthropic"], default=None,
                        help="LLM provider (overrides LLM_PROVIDER)")
    parser.add_argument("--log-level", default=None,
                        help="Log level (overrides LOG_LEVEL)")
    args = parser.parse_args()

    # Build env for the server process so it picks up the overrides
    env = os.environ.copy()
    if args.provider:
        env["LLM_PROVIDER"] = args.provider
    if args.log_level:
        env["LOG_LEVEL"] = args.log_level

    if not (env.get("LLM_API_KEY") or env.get("LLM_PROXY_URL")):
        print("Warning: neither LLM_API_KEY nor LLM_PROXY_URL is set; games cannot start.")

    procs: list[subprocess.Popen] = []

    def shutdown(*_):
        print("\nShutting down...")
        for p in procs:
            p.terminate()
        for p in procs:
            p.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    print(f"Starting API on http://localhost:{args.port} ...")
    procs.append(subprocess.Popen(
        ["uv", "run", "uvicorn", "rpg_arena.app:app", "--reload", "--host", HOST, "--port", str(args.port)],
        cwd=ROOT, env=env,
    ))

    for p in procs:
        p.wait()


if __name__ == "__main__":
    main()
