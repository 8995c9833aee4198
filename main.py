"""
main.py — Sentinel actuation guard entry point.

Parses CLI args, loads configuration, builds the gateway and either runs one
command, an interactive operator console, or the FastAPI web server.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import traceback
from pathlib import Path

# ──────────────────────────────────────────────────────────────
# ASCII banner
# ──────────────────────────────────────────────────────────────

_BANNER = r"""
  ____             _   _            _
 / ___|  ___ _ __ | |_(_)_ __   ___| |
 \___ \ / _ \ '_ \| __| | '_ \ / _ \ |
  ___) |  __/ | | | |_| | | | |  __/ |
 |____/ \___|_| |_|\__|_|_| |_|\___|_|

        Sentinel Actuation Guard  v1.0
   Semantic + physical command validation
"""


# ──────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="sentinel",
        description="Sentinel — safety gate between operator commands and machine telemetry",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument(
        "--config",
        default=None,
        help="Path to a sentinel.yaml (default: $SENTINEL_CONFIG or config/sentinel.yaml)",
    )
    p.add_argument(
        "--command",
        default=None,
        help="Validate one command and exit (e.g. 'set rpm 1500')",
    )
    p.add_argument(
        "--admin",
        action="store_true",
        help="Submit through the administrative override pipeline",
    )
    p.add_argument(
        "--profile",
        default=None,
        help="Load a reference reading first (IDLE, NORMAL, HIGH_LOAD, DEGRADED, CRITICAL, EMERGENCY)",
    )
    p.add_argument(
        "--import-csv",
        default=None,
        metavar="PATH",
        help="Merge a CSV telemetry export into the live state first",
    )
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN"],
        default=None,
        help="Minimum log level for stderr output (default from config)",
    )
    p.add_argument(
        "--web",
        action="store_true",
        help="Start the FastAPI server instead of the console",
    )
    p.add_argument("--host", default=None, help="Bind address for --web (default from config)")
    p.add_argument("--port", type=int, default=None, help="Port for --web (default from config)")
    return p


# ──────────────────────────────────────────────────────────────
# Output helpers
# ──────────────────────────────────────────────────────────────

def _print_outcome(outcome) -> None:
    verdict = outcome.verdict
    status = "AUTHORIZED" if verdict.allowed else verdict.decision.value
    print(f"[{status}] risk={verdict.risk_score:.2f} "
          f"(semantic={verdict.semantic_risk:.2f}, physical={verdict.physical_risk:.2f})")
    if verdict.reason:
        print(f"  reason: {verdict.reason}")
    for change in verdict.proposed_changes:
        print(f"  {change.parameter}: {change.from_value:g} -> {change.to_value:g}")
    for entry in verdict.logs:
        print(f"  [{entry.severity.value:<13}] {entry.message}")
    if outcome.reactions is not None:
        print(f"  hardware:  {outcome.reactions.hardware}")
        print(f"  assistant: {outcome.reactions.conversation}")


def _run_console(controller, admin: bool) -> int:
    """Read commands from stdin until EOF or 'quit'. Returns exit code."""
    prompt = "sentinel(admin)> " if admin else "sentinel> "
    while True:
        try:
            line = input(prompt)
        except EOFError:
            break
        line = line.strip()
        if not line:
            continue
        if line.lower() in ("quit", "exit"):
            break
        if line.lower() == "state":
            print(json.dumps(controller.store.state.to_dict(), indent=2))
            continue
        _print_outcome(controller.submit(line, admin=admin))
    return 0


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    """Application entry point. Returns process exit code."""
    args = _build_parser().parse_args(argv)

    # 1. Configuration
    from core.config import load_config
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    # 2. stdlib logging level + JSONL log directory
    level_map = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING,
                 "WARNING": logging.WARNING, "ERROR": logging.ERROR}
    level_name = (args.log_level or config.logging.level).upper()
    logging.basicConfig(level=level_map.get(level_name, logging.INFO))

    from core.logger import configure_logger
    log = configure_logger(config.logging.log_dir)
    log.info("main", "args_parsed", {
        "command": args.command is not None,
        "admin": args.admin,
        "profile": args.profile,
        "import_csv": args.import_csv,
        "web": args.web,
    })

    if args.command is None:
        print(_BANNER)

    # 3. Gateway
    from pipeline.controller import GuardController
    controller = GuardController(config)

    exit_code = 0
    try:
        if args.profile:
            controller.load_profile(args.profile)
            print(f"[OK] Loaded profile {args.profile.upper()}")
        if args.import_csv:
            result = controller.import_csv(Path(args.import_csv).read_text(encoding="utf-8"))
            print(f"[OK] Imported {len(result.partial_state)} field(s) from {args.import_csv}")
            if result.unmapped:
                print(f"[WARN] Unmapped columns: {', '.join(result.unmapped)}")
            if result.rejected:
                print(f"[WARN] Rejected out-of-range cells: {', '.join(result.rejected)}")

        if args.web:
            from ui.web_app import start_web_server
            host = args.host or config.server.host
            port = args.port or config.server.port
            print(f"[INFO] Web API → http://{host}:{port}/")
            print("       Press Ctrl-C to stop.")
            start_web_server(controller, host=host, port=port)
        elif args.command is not None:
            outcome = controller.submit(args.command, admin=args.admin)
            _print_outcome(outcome)
            exit_code = 0 if outcome.verdict.allowed else 1
        else:
            exit_code = _run_console(controller, admin=args.admin)
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted — shutting down…")
    except KeyError as exc:
        print(f"[ERROR] Unknown profile or field: {exc}", file=sys.stderr)
        exit_code = 2
    except ValueError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        exit_code = 2
    except Exception:                              # noqa: BLE001
        tb = traceback.format_exc()
        print(tb, file=sys.stderr)
        log.critical("main", "unhandled_exception", {"traceback": tb})
        exit_code = 1
    finally:
        controller.shutdown()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
