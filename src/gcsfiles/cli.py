"""CLI entry point for gcsfiles."""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from gcsfiles.config import GCSFilesConfig, load_config
from gcsfiles.errors import GCSFilesError
from gcsfiles.logging_config import configure_logging
from gcsfiles.transport import FileTransport, GCSTransport

logger = logging.getLogger("gcsfiles")


def _parse_header(value: str) -> tuple[str, str]:
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Expected name:value, got {value!r}")
    return name.strip(), header_value.strip()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="gcsfiles",
        description="gcsfiles - Google Cloud Storage file transport",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: built-in defaults)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config, default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default=None,
        choices=["text", "json"],
        help="Log format: 'text' (human-readable) or 'json' (structured)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sign = sub.add_parser("sign", help="Print a signed URL")
    sign.add_argument("--action", choices=["read", "write", "delete"], default="read")
    sign.add_argument("--resource", required=True, help="Object name")
    sign.add_argument(
        "--expires-in",
        type=int,
        default=3600,
        help="Lifetime of the URL in seconds (default: 3600)",
    )
    sign.add_argument("--content-type", default=None)
    sign.add_argument("--md5", default=None, help="Base64 MD5 of the content")
    sign.add_argument(
        "--header",
        dest="headers",
        action="append",
        type=_parse_header,
        default=[],
        help="Extension header as name:value (repeatable)",
    )
    sign.add_argument("--response-type", default=None)
    sign.add_argument("--response-disposition", default=None)
    sign.add_argument("--prompt-save-as", default=None)
    sign.add_argument("--generation", type=int, default=None)

    exists = sub.add_parser("exists", help="Check whether an object exists")
    exists.add_argument("name", help="Object name")

    upload = sub.add_parser("init-upload", help="Open a resumable upload session")
    upload.add_argument("name", help="Object name")
    upload.add_argument("--content-type", required=True)
    upload.add_argument("--md5", required=True, help="Base64 MD5 of the content")
    upload.add_argument("--content-length", type=int, default=None)
    upload.add_argument("--content-encoding", default=None)
    upload.add_argument("--generation", type=int, default=None)

    return parser.parse_args(argv)


async def _run(args: argparse.Namespace, config: GCSFilesConfig) -> int:
    transport: FileTransport = GCSTransport(config)
    try:
        await transport.connect()

        if args.command == "sign":
            url = await transport.create_signed_url(
                args.action,
                args.resource,
                (time.time() + args.expires_in) * 1000,
                content_type=args.content_type,
                md5=args.md5,
                extension_headers=dict(args.headers),
                response_type=args.response_type,
                response_disposition=args.response_disposition,
                prompt_save_as=args.prompt_save_as,
                generation=args.generation,
            )
            print(url)
            return 0

        if args.command == "exists":
            found = await transport.exists(args.name)
            print("true" if found else "false")
            return 0 if found else 1

        metadata: dict[str, object] = {
            "contentType": args.content_type,
            "md5Hash": args.md5,
        }
        if args.content_length is not None:
            metadata["contentLength"] = args.content_length
        if args.content_encoding:
            metadata["contentEncoding"] = args.content_encoding
        uri = await transport.init_resumable_upload(
            args.name, metadata, generation=args.generation
        )
        print(uri)
        return 0
    finally:
        await transport.close()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the gcsfiles CLI.

    Args:
        argv: Argument list to parse. Defaults to sys.argv[1:].
    """
    args = parse_args(argv)

    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    try:
        config = load_config(args.config) if args.config else GCSFilesConfig()
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.log_format is not None:
        config.logging.format = args.log_format

    configure_logging(level=config.logging.level, fmt=config.logging.format)

    try:
        code = asyncio.run(_run(args, config))
    except GCSFilesError as exc:
        logger.error("%s: %s", exc.code, exc.message)
        sys.exit(2)
    sys.exit(code)


if __name__ == "__main__":
    main()
