"""
SpawnRelay CLI entry point.

Usage:
  1. Copy .env.example to .env and point SPAWNRELAY_GATEWAY_URL at a running gateway.
  2. pip install -e .
  3. python main.py spawn --task "summarize the release notes" --session discord:group:123 \
         --provider discord --timeout-seconds 60 --cleanup delete

Prints the sessions_spawn JSON result. When the run finished within the
timeout, the CLI waits (bounded) for the background announce before exiting.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Load .env from the project root
from dotenv import load_dotenv

_env_path = Path(__file__).parent / ".env"
load_dotenv(_env_path)

from spawnrelay.config import ConfigError, load_config  # noqa: E402
from spawnrelay.gateway import HttpGatewayClient  # noqa: E402
from spawnrelay.spawn import SpawnOrchestrator  # noqa: E402
from spawnrelay.tools import execute_tool  # noqa: E402

ANNOUNCE_EXIT_WAIT_SECONDS = 90.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SpawnRelay sub-agent orchestrator")
    parser.add_argument("--config", default=None, help="Path to JSON config (defaults to SPAWNRELAY_CONFIG)")
    parser.add_argument("--gateway-url", default=None, help="Override the gateway URL")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    spawn = sub.add_parser("spawn", help="Spawn a sub-agent run")
    spawn.add_argument("--task", required=True)
    spawn.add_argument("--session", dest="session_key", default=None, help="Requester session key")
    spawn.add_argument("--provider", default=None, help="Requester chat provider")
    spawn.add_argument("--label", default=None)
    spawn.add_argument("--model", default=None)
    spawn.add_argument("--timeout-seconds", type=int, default=0)
    spawn.add_argument("--cleanup", choices=["delete", "keep"], default="keep")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 2
    if args.gateway_url:
        config.gateway_url = args.gateway_url

    gateway = HttpGatewayClient(config.gateway_url, token=config.gateway_token)
    orchestrator = SpawnOrchestrator(gateway, config)
    payload = {
        "task": args.task,
        "label": args.label,
        "model": args.model,
        "timeoutSeconds": args.timeout_seconds,
        "cleanup": args.cleanup,
    }
    result = execute_tool(
        "sessions_spawn",
        json.dumps(payload),
        orchestrator,
        agent_session_key=args.session_key,
        agent_provider=args.provider,
    )
    print(result)

    if not orchestrator.runtime.wait_idle(timeout=ANNOUNCE_EXIT_WAIT_SECONDS):
        pending = [
            run.run_id
            for run in orchestrator.registry.list()
            if orchestrator.runtime.is_running(f"announce:{run.run_id}")
        ]
        print(
            f"[warn] announce still running after {ANNOUNCE_EXIT_WAIT_SECONDS:.0f}s for runs {pending}; "
            "the process exits once it finishes",
            file=sys.stderr,
        )
    # Does not interrupt a running announce; the interpreter joins it at exit.
    orchestrator.runtime.shutdown(wait=False)
    status = json.loads(result).get("status")
    return 0 if status in ("ok", "accepted") else 1


if __name__ == "__main__":
    sys.exit(main())
