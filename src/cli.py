"""GCP <-> Twist webhook bridge command line.

    python -m src.cli print-reply --input-filename payload.json
    python -m src.cli serve --server-name bridge.example.com
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from src.errors import Malformed
from src.handlers.verifier import parse_alert
from src.templates.twist_templates import build_alert_message, build_parse_failure


def reply_for_payload(payload: str) -> str:
    """The Twist message a GCP webhook body would produce."""
    try:
        event = parse_alert(payload)
    except Malformed as exc:
        return build_parse_failure(exc, payload)
    return build_alert_message(event)


def _print_reply(args: argparse.Namespace) -> int:
    payload = Path(args.input_filename).read_text(encoding="utf-8")
    print(reply_for_payload(payload))
    return 0


def _serve(args: argparse.Namespace) -> int:
    # Settings are read at import time, so the environment must be set first.
    os.environ["BRIDGE_SERVER_NAME"] = args.server_name
    if args.db:
        os.environ["BRIDGE_DATABASE_URL"] = f"sqlite+aiosqlite:///{args.db}"

    import uvicorn

    host, _, port = args.bind_addr.rpartition(":")
    uvicorn.run("src.main:app", host=host or "127.0.0.1", port=int(port))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="twist-gcp-thread-bridge", description="GCP <-> Twist Webhook Bridge")
    sub = parser.add_subparsers(dest="command", required=True)

    reply = sub.add_parser("print-reply", help="Print reply to webhook input.")
    reply.add_argument("--input-filename", required=True, help="GCP webhook JSON payload")
    reply.set_defaults(func=_print_reply)

    serve = sub.add_parser("serve", help="Run http server.")
    serve.add_argument("--server-name", required=True, help="public hostname of server")
    serve.add_argument("--bind-addr", default="127.0.0.1:9999", help="listener bind addr")
    serve.add_argument("--db", default=None, help="SQLite database filename (default: BRIDGE_DATABASE_URL)")
    serve.set_defaults(func=_serve)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
