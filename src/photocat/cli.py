"""photocat CLI - operator commands for object storage.

Usage:
    python -m photocat storage check
    python -m photocat storage put FILE --content-type TYPE --actor ID [--item-id ID] [--index N]
    python -m photocat storage get PATH --actor ID [--out FILE]

Exit codes:
    0: Success
    1: Configuration error / Internal error
    2: Storage operation rejected (validation, access, not found, unavailable)
"""

from __future__ import annotations

import argparse
import json
import logging
import mimetypes
import sys
from typing import Any

from photocat.storage.config import load_storage_config
from photocat.storage.errors import ConfigurationError, ObjectStorageError
from photocat.storage.resolver import build_gateway, resolve_storage

logger = logging.getLogger(__name__)


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _error_result(code: str, message: str) -> dict[str, Any]:
    return {"ok": False, "error": {"code": code, "message": message}}


def cmd_storage_check(args: argparse.Namespace) -> int:
    """Resolve the backend from the environment, as the server would at startup.

    Exit codes:
        0: Backend resolved
        1: Configuration error
    """
    try:
        config = load_storage_config()
        storage = resolve_storage(config)
    except ConfigurationError as e:
        _output_json(_error_result("CONFIGURATION_ERROR", e.message))
        return 1

    _output_json(
        {
            "ok": True,
            "backend": storage.backend_name,
            "max_upload_bytes": config.max_upload_bytes,
        }
    )
    return 0


def cmd_storage_put(args: argparse.Namespace) -> int:
    """Upload a local image file through the gateway."""
    content_type = args.content_type or mimetypes.guess_type(args.file)[0]
    gateway = build_gateway()

    try:
        with open(args.file, "rb") as f:
            metadata = gateway.create(
                f,
                content_type,
                None,
                args.actor,
                item_id=args.item_id,
                index=args.index,
            )
    except FileNotFoundError:
        _output_json(_error_result("FILE_NOT_FOUND", f"File not found: {args.file}"))
        return 2
    except ObjectStorageError as e:
        _output_json(_error_result(type(e).__name__, e.message))
        return 2

    _output_json({"ok": True, **metadata.to_dict()})
    return 0


def cmd_storage_get(args: argparse.Namespace) -> int:
    """Stream a stored object to a file or stdout."""
    gateway = build_gateway()

    try:
        with gateway.open(args.path, args.actor) as download:
            if args.out == "-":
                for chunk in download:
                    sys.stdout.buffer.write(chunk)
                sys.stdout.buffer.flush()
            else:
                with open(args.out, "wb") as f:
                    for chunk in download:
                        f.write(chunk)
                _output_json(
                    {
                        "ok": True,
                        "path": download.path.url,
                        "content_type": download.content_type,
                        "size_bytes": download.size_bytes,
                        "out": args.out,
                    }
                )
    except ObjectStorageError as e:
        _output_json(_error_result(type(e).__name__, e.message))
        return 2

    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="photocat",
        description="photocat object storage operator CLI",
    )
    subparsers = parser.add_subparsers(dest="command")

    storage_parser = subparsers.add_parser("storage", help="Object storage commands")
    storage_subparsers = storage_parser.add_subparsers(dest="storage_command")

    storage_subparsers.add_parser("check", help="Validate storage configuration")

    put_parser = storage_subparsers.add_parser("put", help="Upload an image")
    put_parser.add_argument("file", help="Path of the image file")
    put_parser.add_argument("--content-type", default=None, help="Declared MIME type")
    put_parser.add_argument("--actor", required=True, help="Requester identity")
    put_parser.add_argument("--item-id", default=None, help="Existing item id (UUID)")
    put_parser.add_argument("--index", type=int, default=None, help="Image index of the item")

    get_parser = storage_subparsers.add_parser("get", help="Download an image")
    get_parser.add_argument("path", help="Logical path, e.g. /objects/items/<id>.jpg")
    get_parser.add_argument("--actor", default=None, help="Requester identity")
    get_parser.add_argument("--out", default="-", help="Output file (default: stdout)")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Configuration error / Internal error (unexpected)
        2: Storage operation rejected
    """
    try:
        parser = create_parser()
        args = parser.parse_args(argv)

        if args.command != "storage":
            parser.print_help()
            return 0

        if args.storage_command == "check":
            return cmd_storage_check(args)
        if args.storage_command == "put":
            return cmd_storage_put(args)
        if args.storage_command == "get":
            return cmd_storage_get(args)

        parser.parse_args(["storage", "--help"])
        return 0

    except ConfigurationError as e:
        _output_json(_error_result("CONFIGURATION_ERROR", e.message))
        return 1
    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        logger.exception("Unexpected CLI failure")
        _output_json(_error_result("INTERNAL_ERROR", str(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main())
