"""Main module for the imaging service CLI."""

import sys
import argparse
from pathlib import Path
from typing import List, Optional

import uvicorn

from . import __version__
from .api import create_app
from .core.exceptions import ImagingServiceError
from .core.factories import PipelineServiceFactory
from .core.logging_config import setup_logger
from .core.models import ServiceConfig
from .core.services import parse_pipeline


def _load_operations(value: str) -> str:
    """Operations JSON given inline, or as @path to a file."""
    if value.startswith("@"):
        return Path(value[1:]).read_text(encoding="utf-8")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imaging-service",
        description="Imaging Service - ordered image transformation pipelines over HTTP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the HTTP service
  imaging-service serve --host 0.0.0.0 --port 8080 --concurrency 8

  # Apply a pipeline to a local file
  imaging-service process --input photo.jpg --output thumb.png \\
      --operations '[{"operation": "thumbnail", "params": {"width": 200, "height": 200}},
                     {"operation": "convert", "params": {"format": "png"}}]'

  # Show version
  imaging-service version
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default: 8080)")
    serve_parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Maximum concurrent pipelines, 0 for unlimited (default: 4)",
    )
    serve_parser.add_argument(
        "--max-body-size", type=int, default=None, help="Maximum image size in bytes"
    )
    serve_parser.add_argument(
        "--request-timeout", type=float, default=None, help="Per-request deadline in seconds"
    )
    serve_parser.add_argument(
        "--cache-s3-bucket", default=None, help="Store cached results in this S3 bucket"
    )
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    process_parser = subparsers.add_parser(
        "process", help="Apply a pipeline to a local file or URL"
    )
    source = process_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--input", type=Path, help="Input image file")
    source.add_argument("--url", help="Input image URL (fetched through the SSRF guard)")
    process_parser.add_argument(
        "--operations",
        required=True,
        help="JSON array of steps, or @path to a JSON file",
    )
    process_parser.add_argument("--output", type=Path, required=True, help="Output file")
    process_parser.add_argument(
        "--summary", action="store_true", help="Print a JSON summary of the run"
    )
    process_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers.add_parser("version", help="Show version information")
    return parser


def serve(args: argparse.Namespace) -> None:
    config = ServiceConfig.from_env(
        host=args.host,
        port=args.port,
        concurrency=args.concurrency,
        max_body_size=args.max_body_size,
        request_timeout=args.request_timeout,
        cache_s3_bucket=args.cache_s3_bucket,
        log_level="DEBUG" if args.debug else None,
    )
    setup_logger(level=config.log_level)
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


def process(args: argparse.Namespace) -> int:
    """Run one pipeline from the command line; returns the exit code."""
    config = ServiceConfig.from_env(
        cache_enabled=False, log_level="DEBUG" if args.debug else None
    )
    logger = setup_logger(level=config.log_level)
    service = PipelineServiceFactory.create_service(config)

    try:
        specs = parse_pipeline(_load_operations(args.operations))
        if args.input is not None:
            output = service.process_upload(args.input.read_bytes(), specs)
        else:
            output = service.process_url(args.url, specs)
    except ImagingServiceError as e:
        logger.error(f"Pipeline failed: {e}")
        return 1
    except OSError as e:
        logger.error(f"Cannot read input: {e}")
        return 1

    args.output.write_bytes(output.body)
    logger.info(f"Wrote {len(output.body)} bytes ({output.media_type}) to {args.output}")
    if args.summary:
        print(output.summary.model_dump_json(indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the imaging service command-line interface.

    Commands: "serve" runs the HTTP API under uvicorn, "process" applies a
    pipeline to one image, "version" prints version information.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        serve(args)

    elif args.command == "process":
        sys.exit(process(args))

    elif args.command == "version":
        print("Imaging Service CLI")
        print(f"Version {__version__}")
        print("Ordered image transformation pipelines over HTTP")
        sys.exit(0)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
