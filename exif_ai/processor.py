"""
Main processor for the Exif AI service.

One run takes an image through: read existing metadata, generate the
description and tags concurrently, normalize tags, merge, then persist
unless running dry. A failing task degrades to empty output; only rejected
input and metadata I/O failures abort a run.
"""

import asyncio
import time
from pathlib import Path
from typing import Dict, List, Optional, Union
from .models import (
    GenerationRequest,
    MetadataDocument,
    PipelineOptions,
    PipelineResult,
    TaskKind,
    TaskOutcome,
    TaskStatus,
)
from .providers import ProviderError, ProviderRegistry
from .metadata_store import MetadataStore
from .merge_policy import merge_metadata
from .tag_normalizer import normalize_tags
from .logging import get_logger, MetricsLogger


class ValidationError(Exception):
    """Raised when input is rejected before any generation attempt."""
    pass


class MetadataPipeline:
    """Generates descriptions and tags for images and merges them into metadata."""

    def __init__(self, settings, registry: ProviderRegistry, store: MetadataStore,
                 metrics: Optional[MetricsLogger] = None):
        self.settings = settings
        self.registry = registry
        self.store = store
        self.metrics = metrics or MetricsLogger()
        self.logger = get_logger("processor")

    def default_options(self, **overrides) -> PipelineOptions:
        return PipelineOptions.from_settings(self.settings, **overrides)

    def _target_fields(self, task: TaskKind, options: PipelineOptions) -> List[str]:
        return options.description_tags if task is TaskKind.DESCRIPTION else options.tag_tags

    def _prompt(self, task: TaskKind, options: PipelineOptions) -> str:
        return options.description_prompt if task is TaskKind.DESCRIPTION else options.tag_prompt

    def _is_complete(self, document: MetadataDocument, fields: List[str]) -> bool:
        return bool(fields) and all(document.has_value(field) for field in fields)

    async def _run_task(self, task: TaskKind, image: bytes, options: PipelineOptions) -> TaskOutcome:
        """Run one generation task; provider failures become a failed outcome."""
        request = GenerationRequest(
            task=task,
            image=image,
            provider=options.provider,
            model=options.model,
            prompt=self._prompt(task, options),
            provider_args=options.provider_args,
        )
        try:
            result = await self.registry.generate(request)
        except ProviderError as e:
            self.logger.warning(f"⚠️  {task.value.capitalize()} generation failed: {e}")
            return TaskOutcome(task=task, status=TaskStatus.FAILED, error=str(e))

        return TaskOutcome(task=task, status=TaskStatus.SUCCESS, text=result.text, usage=result.usage)

    async def generate(self, image: bytes, document: MetadataDocument,
                       options: PipelineOptions) -> Dict[TaskKind, TaskOutcome]:
        """Run the requested tasks concurrently and wait for all of them."""
        outcomes: Dict[TaskKind, TaskOutcome] = {}
        pending = []

        for task in options.tasks:
            if options.skip and self._is_complete(document, self._target_fields(task, options)):
                self.logger.info(f"⏭️  Skipping {task.value}: target fields already set")
                outcomes[task] = TaskOutcome(task=task, status=TaskStatus.SKIPPED)
            else:
                pending.append(task)

        results = await asyncio.gather(*(self._run_task(task, image, options) for task in pending))
        for outcome in results:
            outcomes[outcome.task] = outcome
        return outcomes

    async def process_file(self, path: Union[str, Path], options: Optional[PipelineOptions] = None,
                           source: Optional[str] = None) -> PipelineResult:
        """Process one image file.

        Raises:
            ValidationError: if the image cannot be read or is empty.
            PersistError: if existing metadata cannot be read or the merged
                values cannot be written.
        """
        start_time = time.time()
        options = options or self.default_options()
        path = Path(path)
        source = source or str(path)

        try:
            image = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ValidationError(f"Cannot read image {source}: {e}") from e
        if not image:
            raise ValidationError(f"Image {source} is empty")

        result = PipelineResult(
            source=source,
            provider=options.provider,
            model=options.model,
            tasks=list(options.tasks),
        )
        if not options.tasks:
            self.logger.info(f"No tasks requested for {source}, leaving metadata unchanged")
            result.processing_time = time.time() - start_time
            return result

        fields = list(dict.fromkeys(options.description_tags + options.tag_tags))
        document = await asyncio.to_thread(self.store.read, path, fields)

        outcomes = await self.generate(image, document, options)

        description = ""
        description_outcome = outcomes.get(TaskKind.DESCRIPTION)
        if description_outcome is not None:
            description = description_outcome.text

        raw_tags_text = ""
        tags: List[str] = []
        tag_outcome = outcomes.get(TaskKind.TAG)
        if tag_outcome is not None:
            raw_tags_text = tag_outcome.text
            tags = normalize_tags(raw_tags_text, dedupe=options.tag_dedupe)

        merged = merge_metadata(
            document,
            description or None,
            tags,
            avoid_overwrite=options.avoid_overwrite,
            description_fields=options.description_tags,
            tag_fields=options.tag_tags,
            tag_delimiter=options.tag_delimiter,
        )

        if options.dry:
            self.logger.info(f"🧪 Dry run for {source}: {len(merged.changes)} fields would be written")
        elif merged.changes:
            await asyncio.to_thread(self.store.write, path, merged.changes, options.write_args)
            result.written = True
            self.logger.info(f"✅ Wrote {len(merged.changes)} fields to {source}")
        else:
            self.logger.info(f"Nothing to write for {source}")

        result.description = description
        result.tags = tags
        result.raw_tags_text = raw_tags_text
        result.outcomes = {task.value: outcome for task, outcome in outcomes.items()}
        result.metadata = merged.document.values
        result.updated_fields = merged.updated_fields
        result.processing_time = time.time() - start_time
        return result

    async def run(self, path: Union[str, Path], options: Optional[PipelineOptions] = None,
                  source: Optional[str] = None) -> PipelineResult:
        """``process_file`` with metrics and failure logging."""
        source = source or str(path)
        try:
            result = await self.process_file(path, options, source=source)
        except Exception as e:
            self.metrics.log_request_failure(source, str(e))
            raise

        failures = sum(1 for outcome in result.outcomes.values() if outcome.status is TaskStatus.FAILED)
        fields_written = len(result.updated_fields) if result.written else 0
        self.metrics.log_request_processed(source, fields_written, failures, result.processing_time)
        return result
