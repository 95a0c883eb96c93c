"""
HTTP API for the Exif AI service.
"""

import asyncio
import os
import signal
import tempfile
from typing import Any, Dict, Optional
from aiohttp import web
from . import __version__
from .models import HealthStatus, PipelineOptions, parse_tasks
from .multipart import ParseError, decode_multipart
from .processor import MetadataPipeline, ValidationError
from .metadata_store import PersistError
from .imaging import sniff_image
from .logging import get_logger


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def json_response(data: Dict[str, Any], status: int = 200) -> web.Response:
    return web.json_response(data, status=status, headers=CORS_HEADERS)


class APIServer:
    """HTTP server exposing image processing and health checks."""

    def __init__(self, pipeline: MetadataPipeline, defaults: Optional[Dict[str, Any]] = None):
        self.pipeline = pipeline
        self.settings = pipeline.settings
        # Option overrides applied to every request before its own fields
        self.defaults = {key: value for key, value in (defaults or {}).items() if value is not None}
        self.logger = get_logger("server")
        self.app = web.Application(
            client_max_size=self.settings.max_upload_bytes,
            middlewares=[self.error_middleware],
        )
        self.setup_routes()

    def setup_routes(self):
        """Setup HTTP routes."""
        self.app.router.add_post("/process", self.process_handler)
        self.app.router.add_get("/health", self.health_handler)
        self.app.router.add_route("OPTIONS", "/{tail:.*}", self.options_handler)

    def error_response(self, status: int, message: str, error: Optional[BaseException] = None,
                       verbose: Optional[bool] = None) -> web.Response:
        if verbose is None:
            verbose = self.settings.verbose
        if status >= 500:
            self.logger.error(f"❌ Error {status}: {message}" + (f" ({error})" if error else ""))
        else:
            self.logger.warning(f"⚠️  Error {status}: {message}" + (f" ({error})" if error else ""))

        body: Dict[str, Any] = {"error": message}
        if verbose and error is not None:
            body["details"] = str(error)
        return json_response(body, status=status)

    @web.middleware
    async def error_middleware(self, request: web.Request, handler):
        """Render routing errors as JSON; unknown routes and methods are 404."""
        try:
            return await handler(request)
        except web.HTTPRequestEntityTooLarge as e:
            return self.error_response(413, "Request body too large", e)
        except web.HTTPException as e:
            if e.status in (404, 405):
                return self.error_response(404, "Not found")
            raise

    async def options_handler(self, request: web.Request) -> web.Response:
        """CORS preflight."""
        return json_response({"message": "OK"})

    async def health_handler(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        health_status = HealthStatus(
            version=__version__,
            provider=self.settings.provider,
            model=self.settings.model or "default",
            tasks=list(self.settings.tasks),
            metrics=self.pipeline.metrics.get_metrics(),
        )
        return json_response(health_status.model_dump(mode="json"))

    def build_options(self, fields: Dict[str, str]) -> PipelineOptions:
        """Request fields override the process defaults; the upload is never written."""
        tasks = None
        if fields.get("tasks"):
            try:
                tasks = parse_tasks(fields["tasks"].split(","))
            except ValueError as e:
                raise ValidationError(str(e)) from e

        avoid_overwrite = None
        if fields.get("avoidOverwrite"):
            avoid_overwrite = fields["avoidOverwrite"].strip().lower() in _TRUE_VALUES

        overrides = dict(self.defaults)
        overrides.update({
            key: value
            for key, value in {
                "provider": (fields.get("provider") or "").strip().lower() or None,
                "model": fields.get("model") or None,
                "tasks": tasks,
                "description_prompt": fields.get("descriptionPrompt") or None,
                "tag_prompt": fields.get("tagPrompt") or None,
                "avoid_overwrite": avoid_overwrite,
            }.items()
            if value is not None
        })
        overrides["dry"] = True
        return self.pipeline.default_options(**overrides)

    async def process_handler(self, request: web.Request) -> web.Response:
        """Process an uploaded image and return the generated metadata."""
        verbose = self.settings.verbose
        content_type = request.headers.get("Content-Type", "")
        if "multipart/form-data" not in content_type.lower():
            return self.error_response(400, "Content-Type must be multipart/form-data")

        try:
            body = await request.read()
            form = decode_multipart(body, content_type)
        except ParseError as e:
            return self.error_response(400, "Malformed multipart body", e)
        except web.HTTPRequestEntityTooLarge as e:
            return self.error_response(413, "Request body too large", e)

        image = form.files.get("image")
        if not image:
            return self.error_response(400, "No image file provided in 'image' field")

        try:
            options = self.build_options(form.fields)
        except ValidationError as e:
            return self.error_response(400, "Invalid request", e)

        temp_path = await asyncio.to_thread(self._write_temp_file, image)
        try:
            result = await self.pipeline.run(temp_path, options, source=f"upload ({len(image)} bytes)")
        except ValidationError as e:
            return self.error_response(400, "Invalid image", e, verbose)
        except PersistError as e:
            return self.error_response(500, "Failed to process image metadata", e, verbose)
        except Exception as e:
            self.logger.exception("Unexpected error while processing upload")
            return self.error_response(500, "Internal server error", e, verbose)
        finally:
            try:
                await asyncio.to_thread(os.unlink, temp_path)
            except OSError as e:
                self.logger.warning(f"⚠️  Failed to remove temp file {temp_path}: {e}")

        return json_response(result.to_response(verbose=verbose))

    @staticmethod
    def _write_temp_file(image: bytes) -> str:
        suffix = sniff_image(image).extension
        with tempfile.NamedTemporaryFile(prefix="exif-ai-", suffix=suffix, delete=False) as temp_file:
            temp_file.write(image)
            return temp_file.name

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the API server."""
        runner = web.AppRunner(self.app)
        await runner.setup()

        site = web.TCPSite(runner, host, port)
        await site.start()

        self.logger.info(f"🚀 Exif AI API server started on {host}:{port}")
        self.logger.info(
            f"⚙️  Provider: {self.settings.provider} | Model: {self.settings.model or 'default'} | "
            f"Tasks: {', '.join(self.settings.tasks)} | Verbose: {self.settings.verbose}"
        )
        self.logger.info("🔗 Endpoints: GET /health, POST /process")
        return runner

    async def stop(self, runner: web.AppRunner):
        """Stop the API server."""
        await runner.cleanup()
        self.logger.info("API server stopped")


async def run_server(pipeline: MetadataPipeline, host: str, port: int,
                     defaults: Optional[Dict[str, Any]] = None, stop_signals=(signal.SIGTERM,)):
    """Run the API server until cancelled or one of ``stop_signals`` arrives."""
    server = APIServer(pipeline, defaults)
    runner = await server.start(host, port)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in stop_signals:
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError) as e:
            server.logger.warning(f"⚠️  Cannot handle {signal.Signals(sig).name}: {e}")

    try:
        await stop_event.wait()
        server.logger.info("⏹️  Received termination signal, shutting down")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await server.stop(runner)
