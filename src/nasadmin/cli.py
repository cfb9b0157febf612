"""
Command-line interface for nasadmin (minimal call shape).

Usage (examples):
  - Plain GET (formatted):
      nasadmin call GET shares --query limit=10 --host nas01 --user admin

  - Long-running call, waiting for the task:
      nasadmin call POST shares --data '{"name": "projects"}' --monitor

  - Safe update (read-modify-write):
      nasadmin update shares/<uuid> --set comment="R&D" --set quota=100
"""

from __future__ import annotations

import argparse
import getpass
import json
import sys
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .core.client import StorageClient
from .core.config import load_config
from .core.errors import (
    AuthenticationError,
    ConfigError,
    TaskFailedError,
    TaskTimeoutError,
    TransportError,
    UpdateTargetNotFoundError,
)
from .core.logging_setup import get_logger, setup_logging

EXIT_OK = 0
EXIT_GENERIC_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_TASK_ERROR = 3
EXIT_NETWORK_ERROR = 4

log = get_logger(__name__)


def _parse_value(text: str) -> Any:
    """JSON literal when it parses (numbers, bools, lists...), plain string otherwise."""
    try:
        return json.loads(text)
    except ValueError:
        return text


def _parse_pairs(items: Optional[List[str]], *, typed: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for item in items or []:
        if "=" not in item:
            raise argparse.ArgumentTypeError(f"expected key=value, got '{item}'")
        key, val = item.split("=", 1)
        key = key.strip()
        value = _parse_value(val) if typed else val
        if key in out:
            prev = out[key]
            out[key] = (prev if isinstance(prev, list) else [prev]) + [value]
        else:
            out[key] = value
    return out


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


def _print_result(result: Any) -> None:
    print(json.dumps(result, indent=2, default=_json_default))


def _add_connection_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--host", default=None, help="Cluster address")
    p.add_argument("--port", type=int, default=None, help="Management port")
    p.add_argument("--user", default=None, help="Username")
    p.add_argument("--password", default=None, help="Password (prompted when a user is given without one)")
    p.add_argument("--insecure", action="store_true", help="Skip TLS certificate verification")
    p.add_argument("--timeout-sec", type=float, default=None, help="HTTP timeout seconds")
    p.add_argument("--logs-dir", default=None, help="Logs base directory")
    p.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="nasadmin", description="Storage management REST client")
    sub = p.add_subparsers(dest="cmd", required=True)

    c = sub.add_parser("call", help="Issue one REST call")
    c.add_argument("method", help="GET, POST, PUT, DELETE or PATCH")
    c.add_argument("path", help="Resource path relative to the REST root")
    c.add_argument("--data", default=None, help="JSON body")
    c.add_argument("--query", action="append", metavar="KEY=VALUE", help="Query parameter (repeatable)")
    c.add_argument("--monitor", action="store_true", help="Wait for the task spawned by the call")
    c.add_argument("--poll-sec", type=float, default=None, help="Task poll interval")
    c.add_argument("--wait-sec", type=float, default=None, help="Task timeout")
    c.add_argument("--raw", action="store_true", help="Do not format GET results")
    _add_connection_args(c)

    u = sub.add_parser("update", help="Safe read-modify-write update")
    u.add_argument("path", help="Resource path relative to the REST root")
    u.add_argument("--set", action="append", dest="sets", metavar="KEY=VALUE", required=True,
                   help="Field to set; VALUE is parsed as JSON when possible (repeatable)")
    _add_connection_args(u)

    return p


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    cluster = {
        "host": args.host,
        "port": args.port,
        "username": args.user,
        "password": args.password,
        "timeout_sec": args.timeout_sec,
    }
    if args.insecure:
        cluster["verify_ssl"] = False
    logging_cfg = {"base_dir": args.logs_dir, "console_level": args.console_level}
    return {
        "cluster": {k: v for k, v in cluster.items() if v is not None},
        "logging": {k: v for k, v in logging_cfg.items() if v is not None},
    }


def _client(args: argparse.Namespace) -> StorageClient:
    cfg = load_config(_overrides(args))
    setup_logging(
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
    )
    if cfg.cluster.username and not cfg.cluster.password:
        cfg.cluster.password = getpass.getpass(f"Password for {cfg.cluster.username}@{cfg.cluster.host}: ")
    log.debug("Connecting to %s:%s", cfg.cluster.host, cfg.cluster.port)
    return StorageClient.from_config(cfg)


def _call_cmd(args: argparse.Namespace) -> Tuple[int, Any]:
    body = json.loads(args.data) if args.data else None
    query = _parse_pairs(args.query, typed=False) or None
    with _client(args) as client:
        if args.monitor:
            result = client.submit(args.method, args.path, body, query,
                                   poll_interval=args.poll_sec, timeout=args.wait_sec)
        else:
            result = client.call(args.method, args.path, body, query, raw=args.raw)
    return EXIT_OK, result


def _update_cmd(args: argparse.Namespace) -> Tuple[int, Any]:
    patch = _parse_pairs(args.sets, typed=True)
    with _client(args) as client:
        result = client.update(args.path, patch)
    return EXIT_OK, result


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    handlers = {"call": _call_cmd, "update": _update_cmd}
    try:
        code, result = handlers[args.cmd](args)
    except ConfigError as exc:
        log.error("Configuration error: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except (TaskFailedError, TaskTimeoutError) as exc:
        log.error("Task error: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_TASK_ERROR
    except (TransportError, AuthenticationError, UpdateTargetNotFoundError) as exc:
        log.error("Request error: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_NETWORK_ERROR
    except (ValueError, argparse.ArgumentTypeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_GENERIC_ERROR

    _print_result(result)
    return code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
