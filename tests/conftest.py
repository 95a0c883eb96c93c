import io
import os
import sys
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest
from PIL import Image

# Make "import exif_ai" work when running pytest from a source checkout
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from exif_ai.config import Settings
from exif_ai.metadata_store import MetadataStore, PersistError
from exif_ai.models import GenerationRequest, GenerationResult, MetadataDocument
from exif_ai.processor import MetadataPipeline
from exif_ai.providers import BaseProvider, ProviderError, ProviderRegistry

# What ExifTool reports for blank fields on the original test image
BLANK = "                               "


def make_jpeg(size=(8, 8), color=(200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG")
    return buffer.getvalue()


def build_multipart(fields: Dict[str, str], files: Dict[str, Tuple[str, bytes]],
                    boundary: Optional[str] = None) -> Tuple[bytes, str]:
    """Encode a multipart/form-data body the way browsers do."""
    boundary = boundary or f"----exifai{uuid.uuid4().hex}"
    chunks: List[bytes] = []
    for name, value in fields.items():
        chunks.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n'.encode()
            + value.encode("utf-8")
            + b"\r\n"
        )
    for name, (filename, payload) in files.items():
        chunks.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
            f"Content-Type: application/octet-stream\r\n\r\n".encode()
            + payload
            + b"\r\n"
        )
    chunks.append(f"--{boundary}--\r\n".encode())
    return b"".join(chunks), f"multipart/form-data; boundary={boundary}"


class EchoProvider(BaseProvider):
    """Returns the prompt as the generated text."""

    name = "echo"

    def __init__(self, usage: Optional[int] = None):
        super().__init__()
        self.usage = usage
        self.requests: List[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        return GenerationResult(text=request.prompt, usage=self.usage)


class ScriptedProvider(BaseProvider):
    """Returns canned text per task, or fails for the tasks listed in ``fail``."""

    name = "scripted"

    def __init__(self, texts: Dict[str, str], fail: Sequence[str] = ()):
        super().__init__()
        self.texts = texts
        self.fail = set(fail)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        if request.task.value in self.fail:
            raise ProviderError(f"{request.task.value} exploded")
        return GenerationResult(text=self.texts.get(request.task.value, ""), usage=10)


class InMemoryMetadataStore(MetadataStore):
    """Metadata kept in a dict per path; blank fields read as ExifTool's placeholder."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, str]]] = None, fail_write: bool = False):
        self.files: Dict[str, Dict[str, str]] = {key: dict(value) for key, value in (initial or {}).items()}
        self.fail_write = fail_write
        self.writes: List[Tuple[str, Dict[str, str], List[str]]] = []
        self.reads = 0

    def read(self, path, fields):
        self.reads += 1
        stored = self.files.get(str(path), {})
        return MetadataDocument(values={field: stored.get(field, BLANK) for field in fields})

    def write(self, path, values, extra_args=()):
        if self.fail_write:
            raise PersistError(f"Failed to write metadata to {path}")
        self.writes.append((str(path), dict(values), list(extra_args)))
        self.files.setdefault(str(path), {}).update(values)

    def value(self, path, field):
        return self.files.get(str(path), {}).get(field, BLANK)


ENV_PREFIXES = ("EXIF_AI_", "OPENAI_", "ANTHROPIC_", "GOOGLE_", "OLLAMA_")
ENV_NAMES = ("PORT", "GEMINI_API_KEY")


class FailingHelper:
    """Stands in for ExifToolHelper; every call raises ``error``."""

    def __init__(self, error):
        self.error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def get_tags(self, files, tags):
        raise self.error

    def set_tags(self, files, tags, params=None):
        raise self.error


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the caller's shell out of Settings."""
    for name in list(os.environ):
        if name.upper().startswith(ENV_PREFIXES) or name.upper() in ENV_NAMES:
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        provider="provider1",
        model="model1",
        description_prompt="Describe image.",
        tag_prompt="mountain, sky, night",
        tasks=["description", "tag"],
        verbose=True,
    )


@pytest.fixture
def echo_provider() -> EchoProvider:
    return EchoProvider(usage=5)


@pytest.fixture
def registry(echo_provider) -> ProviderRegistry:
    return ProviderRegistry({"provider1": echo_provider})


@pytest.fixture
def store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def pipeline(settings, registry, store) -> MetadataPipeline:
    return MetadataPipeline(settings=settings, registry=registry, store=store)


@pytest.fixture
def image_path(tmp_path) -> Path:
    path = tmp_path / "image.jpeg"
    path.write_bytes(make_jpeg())
    return path
