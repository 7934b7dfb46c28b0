"""Main Quart application for the Navi document assistant."""
import asyncio
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError
from quart import Quart, current_app, jsonify, request
from werkzeug.exceptions import HTTPException
import structlog

from navi import config
from navi.db import SQLiteVectorStore, VectorStore
from navi.errors import NaviError, NotFoundError, PayloadTooLargeError, UnsupportedTypeError, ValidationError
from navi.llm_client import OllamaClient
from navi.rag.extractor import KIND_EXTENSIONS, resolve_kind
from navi.rag.generation import AugmentedGenerator
from navi.rag.ingest import IngestPipeline
from navi.rag.retriever import Retriever

logger = structlog.get_logger()

FILE_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


def configure_logging(level: str = None) -> None:
    """Configure structured JSON logging over the stdlib logging module."""
    logging.basicConfig(format="%(message)s", level=(level or config.LOG_LEVEL).upper())
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    """Chat body; the original UI sends 'messages', API callers may send 'history'."""

    messages: Optional[List[ChatMessage]] = None
    history: Optional[List[ChatMessage]] = None

    def conversation(self) -> List[dict]:
        turns = self.messages if self.messages is not None else self.history
        return [turn.model_dump() for turn in turns or []]


@dataclass
class Services:
    """Components sharing one store handle and one Ollama client."""

    store: VectorStore
    client: OllamaClient
    pipeline: IngestPipeline
    retriever: Retriever
    generator: AugmentedGenerator
    uploads_dir: Path
    max_upload_bytes: int


def _services() -> Services:
    return current_app.extensions["navi"]


def sanitize_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", Path(name).name) or "upload"


def _parse_chunk_size(value) -> Optional[int]:
    """Chunk size from a JSON number or form string; None when absent."""
    if value is None or value == "":
        return None
    # JSON true is an int subclass, and 12.9 would truncate silently
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"maxChunkSize must be an integer, got {value!r}")
    try:
        size = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"maxChunkSize must be an integer, got {value!r}")
    if size <= 0:
        raise ValidationError("maxChunkSize must be positive")
    return size


def upload_filename(filename: str, mimetype: str) -> str:
    """Sanitized name whose extension agrees with the declared MIME type.

    Processing picks the extractor from the stored name, so an upload named
    "scan" sent as application/pdf is stored as "scan.pdf".
    """
    name = sanitize_filename(filename)
    kind = resolve_kind(mimetype)
    try:
        if resolve_kind(name) == kind:
            return name
    except UnsupportedTypeError:
        pass
    return name + KIND_EXTENSIONS[kind]


async def _save_upload() -> Path:
    """Validate the multipart 'file' field and store it under the uploads dir."""
    services = _services()
    files = await request.files
    upload = files.get("file")

    if upload is None or not upload.filename:
        raise ValidationError("No file uploaded")

    if upload.mimetype not in config.ALLOWED_UPLOAD_TYPES:
        raise UnsupportedTypeError(
            "Invalid file type. Only PDF and Word documents are allowed."
        )

    data = upload.read()
    if len(data) > services.max_upload_bytes:
        raise PayloadTooLargeError(
            f"File exceeds the {services.max_upload_bytes} byte limit"
        )

    filename = f"{int(time.time() * 1000)}-{upload_filename(upload.filename, upload.mimetype)}"
    path = services.uploads_dir / filename
    await asyncio.to_thread(path.write_bytes, data)

    logger.info(
        "file_uploaded",
        original_name=upload.filename,
        stored_as=filename,
        size=len(data),
    )
    return path


def _find_upload(file_id: str) -> Path:
    if not file_id or not FILE_ID_PATTERN.match(file_id):
        raise ValidationError("File ID is required")

    for path in _services().uploads_dir.iterdir():
        if path.is_file() and path.stem == file_id:
            return path
    raise NotFoundError(f"File not found: {file_id}")


async def _remove_upload(path: Path) -> None:
    """Delete a temporary upload; failures are logged, never raised."""
    try:
        await asyncio.to_thread(path.unlink)
        logger.debug("upload_deleted", path=str(path))
    except OSError as e:
        logger.warning("upload_delete_failed", path=str(path), error=str(e))


async def _process_upload(path: Path, max_chunk_size: Optional[int]):
    """Ingest a stored upload, then delete it whatever the outcome."""
    services = _services()
    try:
        data = await asyncio.to_thread(path.read_bytes)
        result = await services.pipeline.ingest_bytes(
            data,
            declared_type=path.name,
            source_id=path.stem,
            source_name=path.name,
            max_chunk_size=max_chunk_size,
        )
    finally:
        await _remove_upload(path)

    return jsonify({
        "message": "File processed successfully",
        "name": result.source_name,
        "chunkCount": result.chunk_count,
    })


def create_app(
    db_path: Path = None,
    uploads_dir: Path = None,
    client: OllamaClient = None,
    chunk_size: int = None,
    top_k: int = None,
    max_upload_bytes: int = None,
) -> Quart:
    """Build the application.

    Every argument defaults to its value in navi.config. The store is opened
    before serving and closed after.
    """
    configure_logging()

    app = Quart(__name__)
    max_upload_bytes = max_upload_bytes or config.MAX_UPLOAD_BYTES
    # Multipart framing adds a little on top of the file itself
    app.config["MAX_CONTENT_LENGTH"] = max_upload_bytes + 64 * 1024

    store = SQLiteVectorStore(db_path or config.DB_PATH)
    client = client or OllamaClient()
    retriever = Retriever(store, top_k=top_k)
    app.extensions["navi"] = Services(
        store=store,
        client=client,
        pipeline=IngestPipeline(store, client, max_chunk_size=chunk_size),
        retriever=retriever,
        generator=AugmentedGenerator(retriever, client, top_k=top_k),
        uploads_dir=Path(uploads_dir or config.UPLOADS_DIR),
        max_upload_bytes=max_upload_bytes,
    )

    @app.before_serving
    async def startup():
        services = _services()
        services.uploads_dir.mkdir(parents=True, exist_ok=True)
        await services.store.open()
        logger.info("app_started", uploads_dir=str(services.uploads_dir))

    @app.after_serving
    async def shutdown():
        await _services().store.close()

    @app.route("/api/upload", methods=["POST"])
    async def upload():
        """Store an uploaded document for a later /api/process call.

        Returns JSON:
        {
            "fileId": "1700000000000-report",
            "filename": "1700000000000-report.pdf",
            "message": "File uploaded successfully"
        }
        """
        path = await _save_upload()
        return jsonify({
            "fileId": path.stem,
            "filename": path.name,
            "message": "File uploaded successfully",
        })

    @app.route("/api/process", methods=["POST"])
    async def process():
        """Ingest a previously uploaded document.

        Expects JSON body:
        {
            "fileId": "id returned by /api/upload",
            "maxChunkSize": 500  // optional
        }
        """
        data = await request.get_json(silent=True) or {}
        max_chunk_size = _parse_chunk_size(data.get("maxChunkSize"))
        path = _find_upload(data.get("fileId"))

        logger.info("processing_started", file=path.name)
        return await _process_upload(path, max_chunk_size)

    @app.route("/api/documents", methods=["POST"])
    async def ingest_document():
        """Upload and ingest a document in one request."""
        form = await request.form
        max_chunk_size = _parse_chunk_size(form.get("maxChunkSize"))
        path = await _save_upload()
        return await _process_upload(path, max_chunk_size)

    @app.route("/api/documents", methods=["GET"])
    async def list_documents():
        """List ingested documents.

        Returns JSON:
        [
            {"name": "...", "type": "PDF", "chunks": 4, "timestamp": "iso"},
            ...
        ]
        """
        summaries = await _services().store.list_by_source()
        return jsonify([
            {
                "name": s.name,
                "type": s.type,
                "chunks": s.chunk_count,
                "timestamp": s.earliest_timestamp.isoformat(),
            }
            for s in summaries
        ])

    @app.route("/api/documents/<path:name>", methods=["DELETE"])
    async def delete_document(name: str):
        deleted = await _services().store.delete_by_source(name)
        return jsonify({"deleted": name, "chunks": deleted})

    @app.route("/api/chunks/<chunk_id>", methods=["GET"])
    async def get_chunk(chunk_id: str):
        chunk = await _services().store.get(chunk_id)
        return jsonify({
            "id": chunk.id,
            "name": chunk.source_name,
            "text": chunk.text,
            "createdAt": chunk.created_at.isoformat(),
        })

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Answer the last user message from stored documents.

        Expects JSON body:
        {
            "messages": [{"role": "user", "content": "..."}, ...]
        }

        Streams the generation endpoint's raw output as text/event-stream,
        or returns an error envelope if anything fails before streaming.
        """
        data = await request.get_json(silent=True)
        try:
            body = ChatRequest.model_validate(data or {})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid chat request: {e.errors()[0]['msg']}") from e

        history = body.conversation()
        logger.info("chat_request_received", message_count=len(history))

        stream = await _services().generator.answer(history)
        return stream, 200, {
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
        }

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe.

        Checks:
        - Ollama service is reachable
        - Chat and embedding models are available
        - Vector store is open
        """
        services = _services()
        checks = {
            "status": "healthy",
            "ollama": False,
            "models": False,
            "store": services.store.is_open,
        }

        try:
            models = await services.client.list_models()
            checks["ollama"] = True

            required = {services.client.chat_model, services.client.embedding_model}
            missing = [
                name for name in required
                if name not in models and f"{name}:latest" not in models
            ]
            if missing:
                checks["status"] = "unhealthy"
                checks["error"] = f"Missing models: {', '.join(sorted(missing))}"
            else:
                checks["models"] = True

            if checks["store"]:
                checks["chunks"] = await services.store.count()
            else:
                checks["status"] = "unhealthy"

        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = str(e)

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(NaviError)
    async def handle_navi_error(error: NaviError):
        log = logger.warning if error.status_code < 500 else logger.error
        log(
            "request_failed",
            path=request.path,
            error=str(error),
            error_type=type(error).__name__,
            status_code=error.status_code,
        )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    async def handle_http_error(error: HTTPException):
        return jsonify({"error": error.description, "code": error.name.lower().replace(" ", "_")}), error.code

    @app.errorhandler(Exception)
    async def internal_error(error: Exception):
        logger.error("internal_server_error", error=str(error), error_type=type(error).__name__)
        return jsonify({"error": "Internal server error", "code": "internal_error"}), 500

    return app


def main() -> None:
    # For development - use hypercorn "navi.main:create_app()" in production
    create_app().run(host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
