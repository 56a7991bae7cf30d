from __future__ import annotations

import argparse
import json
import sys

import uvicorn

from warden.core.config import load_config
from warden.core.crypto import generate_master_key_bytes, write_key_file
from warden.core.errors import ConfigError
from warden.core.logger import setup_logging
from warden.core.runtime import WardenCore
from warden.web.api import create_app


def main() -> None:
    ap = argparse.ArgumentParser(description="Warden identity, session and audit service")
    ap.add_argument("--config", default="config/warden.json", help="Path to the JSON config file (missing file = defaults).")
    sub = ap.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="Run the HTTP API (default).")
    serve.add_argument("--host", default=None, help="Override web.bind_host.")
    serve.add_argument("--port", type=int, default=None, help="Override web.port.")
    cleanup = sub.add_parser("audit-cleanup", help="Apply audit retention and exit.")
    cleanup.add_argument("--days", type=int, default=None, help="Retention in days (default: audit.retention_days).")
    sub.add_parser("audit-verify", help="Verify the audit hash chain and exit.")
    keygen = sub.add_parser("generate-key", help="Write a new 32-byte master key file and exit.")
    keygen.add_argument("--out", required=True, help="Destination path for the key file.")
    args = ap.parse_args()

    if args.command == "generate-key":
        write_key_file(args.out, generate_master_key_bytes())
        print(f"Master key written to {args.out}")
        return

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"Config error: {e.user_message} {json.dumps(e.to_dict()['context'])}", file=sys.stderr)
        sys.exit(2)

    logger = setup_logging(cfg.log_dir, level=cfg.log_level)
    core = WardenCore.build(cfg, logger=logger)
    try:
        if args.command == "audit-cleanup":
            removed = core.audit.cleanup(args.days)
            logger.info(f"Audit cleanup removed {removed} entries.")
            return
        if args.command == "audit-verify":
            report = core.audit.verify_integrity()
            print(json.dumps(report.model_dump(), indent=2))
            sys.exit(0 if report.ok else 1)

        host = getattr(args, "host", None) or cfg.web.bind_host
        port = getattr(args, "port", None) or cfg.web.port
        logger.info(f"Web server starting on http://{host}:{port}")
        uvicorn.run(create_app(core, logger=logger), host=host, port=port, log_level=cfg.log_level.lower())
    finally:
        core.shutdown()


if __name__ == "__main__":
    main()
