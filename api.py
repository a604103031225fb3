"""
ELLU Studios Assistant - FastAPI Production API

Endpoints:
- POST /api/chat - Ask a course question and get a cited answer
- POST /api/knowledge-update - Add, update, remove or restore course content
- GET  /api/knowledge-update - Update status, backups and statistics
- GET  /api/models - Provider/model catalog with pricing
- GET/POST/DELETE /api/conversations... - Stored chat sessions and export
- GET  /health - Health check

Usage:
    uvicorn api:app --host 0.0.0.0 --port 8000
"""

import os
import json
import logging
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime, timezone
from dataclasses import dataclass
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from starlette.concurrency import run_in_threadpool
import uvicorn

from ellu import __version__
from ellu.conversations import ConversationManager, Message, get_conversation_manager
from ellu.handlers import (
    ErrorHandler,
    RateLimitError,
    SecurityError,
    SecurityValidator,
    UpdateInProgressError,
    ValidationError,
    get_error_handler,
    get_security_validator,
)
from ellu.knowledge import KnowledgeUpdateService, UpdateSource, create_update_service
from ellu.llm import ModelConfig, ModelService, get_model_service
from ellu.rag import RAGAnswer, RAGPipeline, create_rag_pipeline
from ellu.utils import ClientRateLimiter, QueryLogger, TokenUsage, create_rate_limiter, get_logger, get_query_logger

logger = logging.getLogger(__name__)
request_logger = get_logger(__name__)

MAX_UPDATE_BODY_BYTES = 10 * 1024 * 1024
MAX_MESSAGE_LENGTH = 2000
UPDATE_ACTIONS = ("add", "update", "remove", "restore", "status", "backups", "statistics")
QUERY_ACTIONS = ("status", "backups", "statistics")
EXPORT_MEDIA_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
    "pdf": "application/pdf",
}

# =============================================================================
# PYDANTIC MODELS
# =============================================================================


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ModelConfigRequest(CamelModel):
    provider: Literal["openai", "anthropic", "gemini"] = "openai"
    model: str = Field(default="gpt-4o-mini", min_length=1, description="Model id from /api/models")
    temperature: float = Field(default=0.1, ge=0, le=2)
    max_tokens: int = Field(default=2000, ge=1, le=4000)


class ChatTurn(CamelModel):
    role: Literal["user", "assistant"] = Field(..., description="Role: 'user' or 'assistant'")
    content: str = Field(..., description="Message content")


class ChatRequest(CamelModel):
    message: str = Field(..., description="Student question")
    language: Literal["en", "de", "auto"] = Field(default="auto", description="Answer language")
    llm_config: Optional[ModelConfigRequest] = Field(default=None, alias="modelConfig")
    session_id: Optional[str] = Field(default=None, description="Conversation session to append to")
    conversation_history: List[ChatTurn] = Field(default_factory=list, description="Previous messages")

    @field_validator("message")
    @classmethod
    def message_length(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message cannot be empty")
        if len(value) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")
        return value


class CreateSessionRequest(CamelModel):
    language: Literal["en", "de"] = "en"


# =============================================================================
# SERVICES
# =============================================================================


@dataclass
class AppServices:
    """Everything the endpoints need, built once at startup"""
    pipeline: RAGPipeline
    model_service: ModelService
    update_service: KnowledgeUpdateService
    conversations: ConversationManager
    security: SecurityValidator
    chat_limiter: ClientRateLimiter
    update_limiter: ClientRateLimiter
    errors: ErrorHandler
    query_logger: QueryLogger
    trust_forwarded_for: bool = False


def build_services() -> AppServices:
    """Wire the production services from settings"""
    from config import settings

    model_service = get_model_service()
    pipeline = create_rag_pipeline(model_service=model_service)
    counts = pipeline.initialize()
    logger.info(f"Knowledge base ready: {counts['chunks']} chunks, {counts['vectors']} vectors")

    return AppServices(
        pipeline=pipeline,
        model_service=model_service,
        update_service=create_update_service(pipeline.knowledge_base, pipeline.vector_store),
        conversations=get_conversation_manager(),
        security=get_security_validator(),
        chat_limiter=create_rate_limiter("chat"),
        update_limiter=create_rate_limiter("knowledge_update"),
        errors=get_error_handler(),
        query_logger=get_query_logger(),
        trust_forwarded_for=settings.trust_forwarded_for,
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def client_id(request: Request, trust_forwarded_for: bool = False) -> str:
    """Peer address, or the first X-Forwarded-For hop when a trusted proxy sets it"""
    forwarded = request.headers.get("x-forwarded-for") if trust_forwarded_for else None
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(limiter: ClientRateLimiter, identifier: str) -> None:
    allowed, wait = limiter.allow(identifier)
    if not allowed:
        raise RateLimitError(f"Rate limit exceeded. Try again in {wait:.0f} seconds.", retry_after=wait)


def error_response(services: AppServices, exc: Exception, operation: str) -> JSONResponse:
    """Log an exception and turn it into a JSON error body"""
    errors = services.errors
    status = errors.record(exc, operation)
    if status >= 500:
        services.query_logger.log_event(
            "application",
            "error",
            f"{operation} failed",
            **services.security.sanitize_for_logging({
                "error_type": type(exc).__name__,
                "detail": str(exc),
            }),
        )
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(max(1, int(exc.retry_after)))}
    return JSONResponse(
        status_code=status,
        content={"error": errors.public_message(exc)},
        headers=headers,
    )


# =============================================================================
# RESPONSE SHAPES
# =============================================================================


def token_usage_payload(usage: TokenUsage) -> Dict[str, Any]:
    return {
        "promptTokens": usage.prompt_tokens,
        "completionTokens": usage.completion_tokens,
        "totalTokens": usage.total_tokens,
        "embeddingTokens": usage.embedding_tokens,
        "cost": {
            "promptCost": usage.cost.prompt_cost,
            "completionCost": usage.cost.completion_cost,
            "embeddingCost": usage.cost.embedding_cost,
            "totalCost": usage.cost.total_cost,
        },
    }


def chat_payload(answer: RAGAnswer, session_id: Optional[str]) -> Dict[str, Any]:
    payload = {
        "content": answer.content,
        "sources": [
            {
                "title": s.title,
                "section": s.section,
                "type": s.type,
                "courseNumber": s.course_number,
                "moduleNumber": s.module_number,
                "excerpt": s.excerpt,
                "relevanceScore": s.relevance_score,
            }
            for s in answer.sources
        ],
        "processingTime": answer.processing_time,
        "tokenUsage": token_usage_payload(answer.token_usage),
        "timestamp": answer.timestamp,
        "language": answer.language,
    }
    if session_id:
        payload["sessionId"] = session_id
    return payload


# =============================================================================
# FASTAPI APP
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting ELLU Studios assistant API...")
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    yield
    logger.info("Shutting down ELLU Studios assistant API...")


app = FastAPI(
    title="ELLU Studios Assistant API",
    description="Course assistant for the ELLU Studios fashion-design courses",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


# =============================================================================
# SYSTEM
# =============================================================================


@app.get("/health", tags=["System"])
def health_check(services: AppServices = Depends(get_services)):
    """Vector store, knowledge base and query metrics"""
    status = services.pipeline.get_system_status()
    kb = status["knowledge_base"]
    vector_store = status["vector_store"]
    healthy = bool(vector_store.get("healthy")) and kb["chunks"] > 0

    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "knowledgeBase": kb,
        "vectorStore": vector_store,
        "cache": status["cache"],
        "queryLog": services.query_logger.health_check(),
        "metrics": services.query_logger.get_metrics(),
        "performance": status["performance"],
        "errors": services.errors.get_error_stats(),
    }


@app.get("/api/models", tags=["Models"])
def list_models(services: AppServices = Depends(get_services)):
    """Available providers and models with per-1K-token pricing"""
    default = services.model_service.get_default_config()
    return {
        "providers": services.model_service.describe_catalog(),
        "default": {
            "provider": default.provider,
            "model": default.model,
            "temperature": default.temperature,
            "maxTokens": default.max_tokens,
        },
    }


# =============================================================================
# CHAT
# =============================================================================


@app.post("/api/chat", tags=["Chat"])
def chat(body: ChatRequest, request: Request, services: AppServices = Depends(get_services)):
    """
    Answer a course question.

    - Greetings get a canned reply without calling a provider
    - Answers cite the course chunks they were grounded on
    - With sessionId, both turns are appended to that stored session
    """
    ip = client_id(request, services.trust_forwarded_for)
    log = request_logger.context(client=ip, session=body.session_id)

    try:
        enforce_rate_limit(services.chat_limiter, ip)
        message = services.security.validate_message(body.message)

        model_config = None
        if body.llm_config is not None:
            model_config = ModelConfig(
                provider=body.llm_config.provider,
                model=body.llm_config.model,
                temperature=body.llm_config.temperature,
                max_tokens=body.llm_config.max_tokens,
            )

        answer = services.pipeline.query(
            message,
            language=body.language,
            model_config=model_config,
            conversation_history=[turn.model_dump() for turn in body.conversation_history],
            session_id=body.session_id,
        )
    except Exception as e:
        return error_response(services, e, "chat")

    session_id = None
    if body.session_id and services.conversations.get_session(body.session_id) is not None:
        try:
            services.conversations.add_messages(
                body.session_id,
                Message.user(message),
                Message.create(
                    "assistant",
                    answer.content,
                    sources=[s.to_dict() for s in answer.sources],
                    processing_time=answer.processing_time,
                    token_usage=answer.token_usage.to_dict(),
                ),
            )
            session_id = body.session_id
        except OSError as e:
            log.error(f"Failed to store messages in session: {e}")

    log.info(f"Chat answered in {answer.processing_time}ms")
    return chat_payload(answer, session_id)


@app.get("/api/chat", tags=["Chat"])
def chat_get_not_allowed():
    return JSONResponse(status_code=405, content={"error": "Method not allowed"})


# =============================================================================
# KNOWLEDGE UPDATES
# =============================================================================


def _update_response(result) -> JSONResponse:
    payload = result.to_dict()
    return JSONResponse(
        status_code=200 if result.success else 400,
        content={
            "success": payload["success"],
            "message": payload["message"],
            "data": payload["data"],
            "errors": payload["errors"],
            "warnings": payload["warnings"],
        },
    )


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


def _screen_source(security: SecurityValidator, source: Dict[str, Any]) -> None:
    metadata = source.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("Source metadata must be a JSON object")
    security.validate_content(source.get("content") or "")
    title = metadata.get("title")
    if title:
        security.validate_query(title)


def _run_update_action(services: AppServices, body: Dict[str, Any]) -> JSONResponse:
    action = body.get("action")
    service = services.update_service
    security = services.security

    if action in QUERY_ACTIONS:
        return JSONResponse(content={"success": True, "data": _read_update_info(service, action)})

    if action == "add":
        if not isinstance(body.get("source"), dict):
            return _bad_request("Source is required for add action")
        _screen_source(security, body["source"])
        result = service.add_content(UpdateSource.from_dict(body["source"], "Untitled Content"))
    elif action == "update":
        if not body.get("sourceId") or not isinstance(body.get("source"), dict):
            return _bad_request("Source ID and source are required for update action")
        _screen_source(security, body["source"])
        source_id = security.validate_query(body["sourceId"])
        result = service.update_content(source_id, UpdateSource.from_dict(body["source"], "Updated Content"))
    elif action == "remove":
        if not body.get("sourceId"):
            return _bad_request("Source ID is required for remove action")
        result = service.remove_content(security.validate_query(body["sourceId"]))
    else:
        if not body.get("backupId"):
            return _bad_request("Backup ID is required for restore action")
        result = service.restore_backup(security.validate_query(body["backupId"]))

    if result.success:
        services.pipeline.clear_cache()
    return _update_response(result)


def _read_update_info(service: KnowledgeUpdateService, action: str) -> Any:
    if action == "backups":
        return service.get_backups()
    if action == "statistics":
        return service.get_statistics()
    return service.get_status()


@app.post("/api/knowledge-update", tags=["Knowledge"])
async def knowledge_update(request: Request, services: AppServices = Depends(get_services)):
    """
    Mutate the knowledge base.

    Body: {action: add|update|remove|restore, source?, sourceId?, backupId?}
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_UPDATE_BODY_BYTES:
        return JSONResponse(status_code=413, content={"error": "Request too large"})

    raw = await request.body()
    if len(raw) > MAX_UPDATE_BODY_BYTES:
        return JSONResponse(status_code=413, content={"error": "Request too large"})

    try:
        body = json.loads(raw or b"{}")
    except json.JSONDecodeError:
        return _bad_request("Invalid JSON body")
    if not isinstance(body, dict):
        return _bad_request("Request body must be a JSON object")

    action = body.get("action")
    if not action:
        return _bad_request("Action is required")
    if action not in UPDATE_ACTIONS:
        return _bad_request(f"Unknown action: {action}")

    ip = client_id(request, services.trust_forwarded_for)
    log = request_logger.context(client=ip, action=action)

    try:
        enforce_rate_limit(services.update_limiter, ip)
        response = await run_in_threadpool(_run_update_action, services, body)
    except SecurityError as e:
        services.errors.record(e, "knowledge-update")
        return JSONResponse(
            status_code=403,
            content={"error": "Security validation failed", "details": str(e)},
        )
    except UpdateInProgressError as e:
        services.errors.record(e, "knowledge-update")
        return JSONResponse(status_code=409, content={"success": False, "message": str(e)})
    except Exception as e:
        return error_response(services, e, "knowledge-update")

    log.info(f"Knowledge update finished with status {response.status_code}")
    return response


@app.get("/api/knowledge-update", tags=["Knowledge"])
def knowledge_update_info(
    action: str = Query("status", description="status, backups or statistics"),
    services: AppServices = Depends(get_services)
):
    if action not in QUERY_ACTIONS:
        return _bad_request(f"Unknown action: {action}")
    try:
        data = _read_update_info(services.update_service, action)
    except Exception as e:
        return error_response(services, e, "knowledge-update")
    return {"success": True, "data": data}


# =============================================================================
# CONVERSATIONS
# =============================================================================


def _not_found(session_id: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": f"Session not found: {session_id}"})


@app.get("/api/conversations", tags=["Conversations"])
def list_conversations(services: AppServices = Depends(get_services)):
    manager = services.conversations
    return {
        "sessions": [s.to_dict(include_messages=False) for s in manager.get_sessions()],
        "currentSessionId": manager.get_current_session_id(),
    }


@app.post("/api/conversations", tags=["Conversations"], status_code=201)
def create_conversation(body: CreateSessionRequest, services: AppServices = Depends(get_services)):
    session = services.conversations.create_session(body.language)
    services.conversations.set_current_session_id(session.id)
    return session.to_dict()


@app.get("/api/conversations/stats", tags=["Conversations"])
def conversation_stats(services: AppServices = Depends(get_services)):
    return services.conversations.get_stats()


@app.get("/api/conversations/{session_id}", tags=["Conversations"])
def get_conversation(session_id: str, services: AppServices = Depends(get_services)):
    session = services.conversations.get_session(session_id)
    if session is None:
        return _not_found(session_id)
    return session.to_dict()


@app.delete("/api/conversations/{session_id}", tags=["Conversations"])
def delete_conversation(session_id: str, services: AppServices = Depends(get_services)):
    if not services.conversations.delete_session(session_id):
        return _not_found(session_id)
    return {"success": True}


@app.get("/api/conversations/{session_id}/export", tags=["Conversations"])
def export_conversation(
    session_id: str,
    export_format: str = Query("json", alias="format", description="json, csv or pdf"),
    services: AppServices = Depends(get_services)
):
    try:
        content = services.conversations.export_session(session_id, export_format)
    except Exception as e:
        return error_response(services, e, "export")
    if content is None:
        return _not_found(session_id)

    filename = f"session-{session_id}-{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.{export_format}"
    return Response(
        content=content,
        media_type=EXPORT_MEDIA_TYPES[export_format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# =============================================================================
# RUN
# =============================================================================

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "api:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV", "production") == "development"
    )
