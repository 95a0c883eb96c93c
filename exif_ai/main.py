"""
Main entry point for the Exif AI service.
"""

import asyncio
import argparse
import json
import sys
from typing import Any, Dict, List, Optional
from pydantic import ValidationError as SettingsError
from .config import Settings, get_settings
from .models import PipelineOptions, TaskStatus, parse_tasks
from .processor import MetadataPipeline, ValidationError
from .providers import create_provider_registry
from .metadata_store import ExifToolStore, PersistError
from .server import run_server
from .logging import setup_logging, get_logger


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="exif-ai",
        description="Exif AI - AI-generated descriptions and tags written into image metadata"
    )

    parser.add_argument(
        "-i", "--input",
        nargs="+",
        default=[],
        metavar="PATH",
        help="Image file(s) to process"
    )

    parser.add_argument(
        "--serve",
        action="store_true",
        help="Run the HTTP API server instead of processing files"
    )

    parser.add_argument("--host", help="API server host (default from EXIF_AI_HOST)")
    parser.add_argument("--port", type=int, help="API server port (default from PORT)")

    parser.add_argument("-p", "--provider", help="AI provider (ollama, openai, anthropic, google)")
    parser.add_argument("-m", "--model", help="Model name passed to the provider")

    parser.add_argument(
        "-t", "--tasks",
        type=_csv,
        help="Comma-separated tasks: description, tag (use '' for none)"
    )

    parser.add_argument(
        "--description-tags",
        type=_csv,
        help="Comma-separated metadata fields receiving the description"
    )

    parser.add_argument(
        "--tag-tags",
        type=_csv,
        help="Comma-separated metadata fields receiving the tags"
    )

    parser.add_argument("--description-prompt", help="Prompt for the description task")
    parser.add_argument("--tag-prompt", help="Prompt for the tag task")

    parser.add_argument(
        "--avoid-overwrite",
        action="store_true",
        help="Keep metadata fields that already have a value"
    )

    parser.add_argument(
        "--dry",
        action="store_true",
        help="Generate and merge but do not write metadata"
    )

    parser.add_argument(
        "--skip",
        action="store_true",
        help="Skip a task when all of its target fields already have values"
    )

    parser.add_argument(
        "--write-arg",
        dest="write_args",
        action="append",
        default=[],
        metavar="ARG",
        help="Extra ExifTool write argument, e.g. --write-arg=-overwrite_original (repeatable)"
    )

    parser.add_argument(
        "--provider-arg",
        dest="provider_args",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra provider request field, JSON values allowed (repeatable)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose logging and error details"
    )

    args = parser.parse_args(argv)
    if not args.serve and not args.input:
        parser.error("either --input or --serve is required")
    if args.serve and args.write_args:
        parser.error("--write-arg cannot be used with --serve; uploads are never written")

    try:
        args.provider_args = parse_provider_args(args.provider_args)
        if args.tasks is not None:
            args.tasks = parse_tasks(args.tasks)
    except ValueError as e:
        parser.error(str(e))

    return args


def parse_provider_args(values: List[str]) -> Dict[str, Any]:
    """Turn KEY=VALUE strings into a dict, decoding JSON values where possible."""
    parsed: Dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Provider argument must look like KEY=VALUE: {item!r}")
        try:
            parsed[key.strip()] = json.loads(raw)
        except json.JSONDecodeError:
            parsed[key.strip()] = raw
    return parsed


def apply_overrides(settings: Settings, args) -> Settings:
    """Return settings with the server-wide command line overrides applied."""
    overrides: Dict[str, Any] = {
        "host": args.host,
        "port": args.port,
        "provider": args.provider.strip().lower() if args.provider else None,
        "model": args.model,
        "description_prompt": args.description_prompt,
        "tag_prompt": args.tag_prompt,
        "description_tags": args.description_tags,
        "tag_tags": args.tag_tags,
        "tasks": [task.value for task in args.tasks] if args.tasks is not None else None,
    }
    if args.verbose:
        overrides["verbose"] = True
        overrides["log_level"] = "DEBUG"
    return settings.model_copy(update={key: value for key, value in overrides.items() if value is not None})


def build_pipeline(settings: Settings) -> MetadataPipeline:
    """Wire the pipeline to the real providers and ExifTool."""
    return MetadataPipeline(
        settings=settings,
        registry=create_provider_registry(settings),
        store=ExifToolStore(executable=settings.exiftool_path),
    )


async def process_files(pipeline: MetadataPipeline, paths: List[str], options: PipelineOptions) -> int:
    """Process each file in turn; returns the number of failed files."""
    logger = get_logger("main")
    failures = 0

    for path in paths:
        logger.info(f"🖼️  Processing {path}")
        try:
            result = await pipeline.run(path, options)
        except (ValidationError, PersistError) as e:
            logger.error(f"❌ {path}: {e}")
            failures += 1
            continue

        for name, outcome in result.outcomes.items():
            if outcome.status is TaskStatus.FAILED:
                logger.warning(f"⚠️  {path}: {name} failed" + (f": {outcome.error}" if options.verbose else ""))

        if result.description:
            logger.info(f"📝 Description: {result.description}")
        if result.tags:
            logger.info(f"🏷️  Tags: {', '.join(result.tags)}")
        if options.dry:
            logger.info(f"🧪 Would update: {', '.join(result.updated_fields) or 'nothing'}")
        elif result.written:
            logger.info(f"✅ Updated: {', '.join(result.updated_fields)}")

    return failures


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_arguments(argv)

    try:
        settings = apply_overrides(get_settings(), args)
    except SettingsError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level)
    logger = get_logger("main")
    pipeline = build_pipeline(settings)

    if args.serve:
        logger.info(f"🚀 Starting Exif AI API server on {settings.host}:{settings.port}")
        defaults = {
            "avoid_overwrite": args.avoid_overwrite or None,
            "skip": args.skip or None,
            "provider_args": args.provider_args or None,
        }
        try:
            asyncio.run(run_server(pipeline, settings.host, settings.port, defaults))
        except KeyboardInterrupt:
            logger.info("⏹️  Server interrupted by user")
        return 0

    options = pipeline.default_options(
        avoid_overwrite=args.avoid_overwrite,
        dry=args.dry,
        skip=args.skip,
        write_args=args.write_args,
        provider_args=args.provider_args,
    )

    try:
        failures = asyncio.run(process_files(pipeline, args.input, options))
    except KeyboardInterrupt:
        logger.info("⏹️  Processing interrupted by user")
        return 1

    if failures:
        logger.error(f"❌ {failures} of {len(args.input)} files failed")
        return 1
    logger.info(f"✅ Processed {len(args.input)} files")
    return 0


if __name__ == "__main__":
    sys.exit(main())
