"""
Data models for the Exif AI service.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field


class TaskKind(str, Enum):
    """Generation task."""
    DESCRIPTION = "description"
    TAG = "tag"


TASK_ALIASES = {
    "description": TaskKind.DESCRIPTION,
    "tag": TaskKind.TAG,
    "tags": TaskKind.TAG,
}


def parse_tasks(values: Iterable[str]) -> List[TaskKind]:
    """Map task tokens to task kinds.

    ``tags`` is an alias of ``tag``; repeats collapse and the order of first
    appearance is kept. Raises ``ValueError`` on unknown tokens.
    """
    tasks: List[TaskKind] = []
    for value in values:
        token = value.strip().lower()
        if not token:
            continue
        if token not in TASK_ALIASES:
            raise ValueError(f"Unknown task: {value!r}")
        task = TASK_ALIASES[token]
        if task not in tasks:
            tasks.append(task)
    return tasks


class TaskStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class GenerationRequest(BaseModel):
    """One generation call to a provider."""
    model_config = ConfigDict(frozen=True)

    task: TaskKind
    image: bytes = Field(repr=False)
    provider: str
    model: Optional[str] = None
    prompt: str
    provider_args: Dict[str, Any] = {}


class GenerationResult(BaseModel):
    """Provider output for one task."""
    text: str = ""
    usage: Optional[int] = None


class TaskOutcome(BaseModel):
    """What happened to one task of one request."""
    task: TaskKind
    status: TaskStatus
    text: str = ""
    usage: Optional[int] = None
    error: Optional[str] = None


class DecodedForm(BaseModel):
    """Text fields and file payloads of a multipart body."""
    fields: Dict[str, str] = {}
    files: Dict[str, bytes] = Field(default={}, repr=False)


class MetadataDocument(BaseModel):
    """Current values of the targeted metadata fields of one image."""
    values: Dict[str, Optional[str]] = {}

    def get(self, field: str) -> Optional[str]:
        return self.values.get(field)

    def has_value(self, field: str) -> bool:
        """Whitespace-only values count as empty."""
        value = self.values.get(field)
        return value is not None and bool(str(value).strip())


class PipelineOptions(BaseModel):
    """Fully resolved options for one pipeline run."""
    model_config = ConfigDict(frozen=True)

    provider: str
    model: Optional[str] = None
    tasks: List[TaskKind] = [TaskKind.DESCRIPTION, TaskKind.TAG]
    description_prompt: str
    tag_prompt: str
    description_tags: List[str]
    tag_tags: List[str]
    tag_delimiter: str = ";"
    tag_dedupe: str = "exact"
    avoid_overwrite: bool = False
    dry: bool = False
    skip: bool = False
    write_args: List[str] = []
    provider_args: Dict[str, Any] = {}
    verbose: bool = False

    @classmethod
    def from_settings(cls, settings, **overrides) -> "PipelineOptions":
        """Start from the process defaults and apply non-None overrides."""
        values: Dict[str, Any] = {
            "provider": settings.provider,
            "model": settings.model,
            "tasks": parse_tasks(settings.tasks),
            "description_prompt": settings.description_prompt,
            "tag_prompt": settings.tag_prompt,
            "description_tags": list(settings.description_tags),
            "tag_tags": list(settings.tag_tags),
            "tag_delimiter": settings.tag_delimiter,
            "tag_dedupe": settings.tag_dedupe,
            "verbose": settings.verbose,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


class PipelineResult(BaseModel):
    """Result of processing one image."""
    source: str
    success: bool = True
    description: str = ""
    tags: List[str] = []
    raw_tags_text: str = ""
    provider: str
    model: Optional[str] = None
    tasks: List[TaskKind] = []
    outcomes: Dict[str, TaskOutcome] = {}
    metadata: Dict[str, Optional[str]] = {}
    updated_fields: List[str] = []
    written: bool = False
    processing_time: float = 0.0

    def token_usage(self) -> Optional[Dict[str, int]]:
        """Per-task and total token counts, or None when no provider reported usage."""
        usage = {
            name: outcome.usage
            for name, outcome in self.outcomes.items()
            if outcome.usage is not None
        }
        if not usage:
            return None
        usage["total"] = sum(usage.values())
        return usage

    def to_response(self, verbose: bool = False) -> Dict[str, Any]:
        """Render the JSON body of a successful ``POST /process``."""
        body: Dict[str, Any] = {
            "success": self.success,
            "description": self.description,
            "tags": self.tags,
            "rawTagsText": self.raw_tags_text,
            "provider": self.provider,
            "model": self.model or "default",
            "tasks": [task.value for task in self.tasks],
            "taskStatus": {name: outcome.status.value for name, outcome in self.outcomes.items()},
            "metadata": self.metadata,
            "updatedFields": self.updated_fields,
        }
        usage = self.token_usage()
        if usage is not None:
            body["tokenUsage"] = usage
        if verbose:
            errors = {name: outcome.error for name, outcome in self.outcomes.items() if outcome.error}
            if errors:
                body["errors"] = errors
        return body


class HealthStatus(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = "1.0.0"
    provider: str
    model: str = "default"
    tasks: List[str] = []
    metrics: Dict[str, Any] = {}
