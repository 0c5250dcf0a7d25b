from __future__ import annotations

import argparse
import sys
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional

from .audit import JsonAuditLogger
from .config import EnablementConfig, read_config_file
from .dependencies import check_runtime
from .errors import EnablementError, PreconditionError
from .models import STEP_PROFILES
from .orchestrator import build_orchestrator
from .sessions import always_reuse, prompt_reconnect
from .transcript import Transcript

DEFAULT_TRANSCRIPT_PREFIX = "EnableSensitivityLabels"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Enable sensitivity labels for Microsoft 365 groups, SharePoint and OneDrive"
    )
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("--tenant-id", help="Tenant ID to target (overrides the configuration file)")
    parser.add_argument(
        "--sharepoint-admin-url",
        help="SharePoint admin center URL, e.g. https://contoso-admin.sharepoint.com",
    )
    parser.add_argument(
        "--profile",
        choices=sorted(STEP_PROFILES),
        help="Named step list to run instead of the configured steps",
    )
    parser.add_argument(
        "--log-path",
        type=Path,
        default=Path.cwd(),
        help="Directory for the transcript file (default: current directory)",
    )
    parser.add_argument(
        "--transcript-prefix",
        default=DEFAULT_TRANSCRIPT_PREFIX,
        help="File name prefix of the transcript",
    )
    parser.add_argument("--skip-install", action="store_true", help="Bypass the package install/update phase")
    parser.add_argument("--force-reinstall", action="store_true", help="Reinstall every required package")
    parser.add_argument(
        "--confirm-reconnect",
        action="store_true",
        help="Ask before reusing an existing session",
    )
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> EnablementConfig:
    raw: Dict[str, Any] = read_config_file(args.config) if args.config else {}
    tenant = dict(raw.get("tenant") or {})
    if args.tenant_id:
        tenant["tenant_id"] = args.tenant_id
    if args.sharepoint_admin_url:
        tenant["sharepoint_admin_url"] = args.sharepoint_admin_url
    if not tenant.get("tenant_id"):
        raise PreconditionError("A tenant ID is required (--tenant-id or tenant.tenant_id in --config)")
    raw["tenant"] = tenant

    if args.profile:
        return EnablementConfig.from_profile(args.profile, raw)
    return EnablementConfig.build(raw)


def run(args: argparse.Namespace, audit_logger: JsonAuditLogger) -> int:
    config = load_config(args)
    check_runtime(config.minimum_python)

    orchestrator = build_orchestrator(
        config,
        audit_logger,
        reconnect_policy=prompt_reconnect if args.confirm_reconnect else always_reuse,
        skip_install=args.skip_install,
        force_reinstall=args.force_reinstall,
    )
    try:
        report = orchestrator.run()
    finally:
        orchestrator.session_manager.close_all()
    return report.exit_code


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        args.log_path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"Could not create log directory {args.log_path}: {exc}", file=sys.stderr)
        return 1

    with Transcript(args.log_path, args.transcript_prefix) as transcript:
        print(f"Transcript: {transcript.path}")
        audit_logger = JsonAuditLogger()
        try:
            return run(args, audit_logger)
        except EnablementError as exc:
            print(f"[-] {exc}", file=sys.stderr)
            traceback.print_exc()
            return 1
        finally:
            audit_logger.close()


if __name__ == "__main__":
    sys.exit(main())
