"""
Document Extraction & Search API
Upload documents, extract their tables and text with a vision model, index
them into an OpenAI vector store and answer questions over them.
"""
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, FastAPI, File, Form, Path, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from docsearch.clients import close_clients
from docsearch.config import Settings, get_settings
from docsearch.errors import AppError, InternalError, NotFoundError, ValidationError
from docsearch.models.schemas import (
    SearchRequest,
    UploadedFile,
    VectorStoreCreateRequest,
    VectorStoreFileCreateRequest,
)
from docsearch.services.document_repository import DocumentRepository, get_document_repository
from docsearch.services.progress import ProgressRegistry, get_progress_registry
from docsearch.services.search_service import SearchService, get_search_service, strip_citations
from docsearch.services.upload_orchestrator import UploadOrchestrator, get_upload_orchestrator
from docsearch.services.vector_store import VectorStoreService, get_vector_store

settings = get_settings()

# Configure logging for terminal readability
logging.basicConfig(format="%(message)s", level=settings.log_level.upper())
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="%H:%M:%S" if settings.environment == "development" else "iso"),
        structlog.dev.ConsoleRenderer() if settings.environment == "development"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

ID_PATTERN = r"^[a-zA-Z0-9_-]+$"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Document search API starting", environment=settings.environment)
    yield
    await close_clients()
    logger.info("Document search API stopped")


# Create FastAPI app
app = FastAPI(
    title="Document Extraction & Search",
    description="Upload documents, extract tables and text, search across them",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────────────────────
# Error Handlers
# ─────────────────────────────────────────────────────────────

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    logger.error(
        "Request failed",
        method=request.method,
        path=request.url.path,
        code=exc.code.value,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = [
        {"loc": [str(part) for part in error["loc"]], "message": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    message = problems[0]["message"] if problems else "Invalid request"
    return JSONResponse(
        status_code=400,
        content=ValidationError(message, {"errors": problems}).to_payload(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", method=request.method, path=request.url.path)
    error = InternalError("An unexpected error occurred")
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


# ─────────────────────────────────────────────────────────────
# API 1: Upload
# ─────────────────────────────────────────────────────────────

@app.post("/upload")
async def upload_file(
    file: Optional[UploadFile] = File(None),
    progress_id: Optional[str] = Form(None),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    registry: ProgressRegistry = Depends(get_progress_registry),
    settings: Settings = Depends(get_settings),
):
    """
    Upload a file, extract its content and index it for search.
    Re-uploading a file with the same name returns the existing document.
    """
    if file is None:
        return JSONResponse(status_code=400, content={"error": "No file provided"})

    upload = UploadedFile(
        content=await file.read(),
        filename=file.filename or "",
        content_type=file.content_type or "",
    )
    progress = registry.open(progress_id) if progress_id else None

    try:
        outcome = await asyncio.wait_for(
            orchestrator.run(upload, progress=progress),
            timeout=settings.upload_timeout_seconds,
        )
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except asyncio.TimeoutError:
        logger.error("Upload timed out", filename=upload.filename, timeout=settings.upload_timeout_seconds)
        return JSONResponse(status_code=500, content={"error": "Upload timed out"})
    except AppError as e:
        return JSONResponse(status_code=500, content={"error": e.message})
    except Exception:
        logger.exception("Upload failed", filename=upload.filename)
        return JSONResponse(status_code=500, content={"error": "Failed to upload file"})
    finally:
        if progress_id:
            registry.release(progress_id)

    record = outcome.record
    if outcome.duplicate:
        return {
            "message": "File already exists",
            "originalName": upload.filename,
            "size": upload.size,
            "type": upload.content_type,
            "uploadedAt": outcome.uploaded_at.isoformat(),
            "existingDocument": {
                "id": record.id,
                "uploadedAt": record.uploaded_at.isoformat(),
                "processingTimeMs": record.processing_time_ms,
            },
            "duplicate": True,
        }

    return {
        "message": "File uploaded successfully",
        "originalName": upload.filename,
        "size": upload.size,
        "type": upload.content_type,
        "uploadedAt": outcome.uploaded_at.isoformat(),
        "processing": {
            "method": "direct-vision-api",
            "originalType": upload.content_type,
        },
        "extraction": outcome.extraction.model_dump(mode="json", by_alias=True),
        "documentId": record.id,
        "vectorStore": outcome.index_entry.model_dump(mode="json", by_alias=True),
    }


# ─────────────────────────────────────────────────────────────
# API 2: Search
# ─────────────────────────────────────────────────────────────

@app.post("/search")
async def search_documents(
    request: SearchRequest,
    search_service: SearchService = Depends(get_search_service),
):
    """Answer a question from the indexed documents."""
    result = await search_service.search(request.query)
    return {
        "success": True,
        "query": request.query,
        "response": strip_citations(result.response),
        "metadata": {
            "runId": result.run_id,
            "threadId": result.thread_id,
            "searchedAt": datetime.now(timezone.utc).isoformat(),
        },
    }


# ─────────────────────────────────────────────────────────────
# API 3: Documents
# ─────────────────────────────────────────────────────────────

@app.get("/documents")
async def list_documents(repository: DocumentRepository = Depends(get_document_repository)):
    """List all documents, newest first."""
    documents = await repository.list_all()
    return {
        "success": True,
        "count": len(documents),
        "documents": [document.model_dump(mode="json", by_alias=True) for document in documents],
    }


@app.get("/documents/{document_id}")
async def get_document(
    document_id: str = Path(..., pattern=ID_PATTERN),
    repository: DocumentRepository = Depends(get_document_repository),
):
    document = await repository.get(document_id)
    if document is None:
        raise NotFoundError("Document", document_id)
    return {"success": True, "document": document.model_dump(mode="json", by_alias=True)}


@app.delete("/documents/{document_id}")
async def delete_document(
    document_id: str = Path(..., pattern=ID_PATTERN),
    repository: DocumentRepository = Depends(get_document_repository),
    vector_store: VectorStoreService = Depends(get_vector_store),
):
    """Delete a document and release its indexed content."""
    document = await repository.get(document_id)
    if document is None:
        raise NotFoundError("Document", document_id)

    await vector_store.release_entry(
        document.vector_store_id,
        document.vector_store_file_id,
        document.extracted_file_id,
    )
    await repository.delete(document_id)
    logger.info("Document deleted", document_id=document_id, original_name=document.original_name)
    return {"success": True, "message": "Document deleted successfully"}


# ─────────────────────────────────────────────────────────────
# API 4: Vector Stores
# ─────────────────────────────────────────────────────────────

@app.get("/vector-stores")
async def list_vector_stores(vector_store: VectorStoreService = Depends(get_vector_store)):
    stores = await vector_store.list_stores()
    return {"success": True, "vectorStores": jsonable_encoder(stores), "count": len(stores)}


@app.post("/vector-stores")
async def create_vector_store(
    request: VectorStoreCreateRequest,
    vector_store: VectorStoreService = Depends(get_vector_store),
):
    options: Dict[str, Any] = {}
    if request.name:
        options["name"] = request.name
    if request.expires_days:
        options["expires_after"] = {"anchor": "last_active_at", "days": request.expires_days}
    if request.chunking_strategy:
        options["chunking_strategy"] = request.chunking_strategy.model_dump()
    if request.metadata:
        options["metadata"] = request.metadata

    created = await vector_store.create_store(options)
    return {"success": True, "vectorStore": jsonable_encoder(created)}


@app.get("/vector-stores/{vector_store_id}")
async def get_vector_store_details(
    vector_store_id: str = Path(..., pattern=ID_PATTERN),
    vector_store: VectorStoreService = Depends(get_vector_store),
):
    store = await vector_store.get_store(vector_store_id)
    return {"success": True, "vectorStore": jsonable_encoder(store)}


@app.delete("/vector-stores/{vector_store_id}")
async def delete_vector_store(
    vector_store_id: str = Path(..., pattern=ID_PATTERN),
    vector_store: VectorStoreService = Depends(get_vector_store),
):
    result = await vector_store.delete_store(vector_store_id)
    return {
        "success": True,
        "message": "Vector store deleted successfully",
        "result": jsonable_encoder(result),
    }


@app.get("/vector-stores/{vector_store_id}/files")
async def list_vector_store_files(
    vector_store_id: str = Path(..., pattern=ID_PATTERN),
    vector_store: VectorStoreService = Depends(get_vector_store),
):
    files = await vector_store.list_files(vector_store_id)
    return {"success": True, "files": jsonable_encoder(files), "count": len(files)}


@app.post("/vector-stores/{vector_store_id}/files")
async def add_vector_store_file(
    request: VectorStoreFileCreateRequest,
    vector_store_id: str = Path(..., pattern=ID_PATTERN),
    vector_store: VectorStoreService = Depends(get_vector_store),
):
    result = await vector_store.add_file(vector_store_id, request.file_id)
    return {
        "success": True,
        "message": "File added to vector store successfully",
        "result": jsonable_encoder(result),
    }


@app.delete("/vector-stores/{vector_store_id}/files/{file_id}")
async def remove_vector_store_file(
    vector_store_id: str = Path(..., pattern=ID_PATTERN),
    file_id: str = Path(..., pattern=ID_PATTERN),
    vector_store: VectorStoreService = Depends(get_vector_store),
):
    result = await vector_store.remove_file(vector_store_id, file_id)
    return {
        "success": True,
        "message": "File removed from vector store successfully",
        "result": jsonable_encoder(result),
    }


# ─────────────────────────────────────────────────────────────
# Progress Stream
# ─────────────────────────────────────────────────────────────

def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@app.get("/progress/{progress_id}")
async def stream_progress(
    progress_id: str,
    registry: ProgressRegistry = Depends(get_progress_registry),
):
    """Server-sent events for one upload, ending at completed/error."""
    session = registry.open(progress_id)

    async def event_stream():
        yield _sse({"type": "connected", "id": progress_id})
        try:
            async for event in session.events(idle_timeout=registry.ttl_seconds):
                yield _sse(event.to_dict())
        finally:
            registry.release(progress_id)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# ─────────────────────────────────────────────────────────────
# Helper Endpoints
# ─────────────────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("docsearch.main:app", host="0.0.0.0", port=8000, reload=settings.environment == "development")
