"""HTTP surface: one POST per conversational turn plus a health check."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .auth import IdentityVerifier
from .chat import ChatService, PydanticAIStylist
from .config import GuidedLookConfig, load_config
from .contracts import ChatRequest
from .errors import RateLimited, ServiceError
from .generation import GenerationOrchestrator, HttpGenerationClient
from .persistence import WorkflowRepository, get_repository
from .quota import (
    CreditLedger,
    InMemoryCreditLedger,
    InMemoryRateLimiter,
    PostgresQuotaGateway,
    RateLimiter,
)
from .workflow.controller import WorkflowController

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Demasiadas solicitudes en poco tiempo. Espera un momento y reintenta."
BLOCKED_MESSAGE = "Detectamos muchos errores seguidos. Espera unos minutos antes de intentar de nuevo."


@dataclass
class Services:
    """Collaborators shared by every request."""

    config: GuidedLookConfig
    repository: WorkflowRepository
    verifier: IdentityVerifier
    rate_limiter: RateLimiter
    ledger: CreditLedger
    workflow: WorkflowController
    chat: ChatService


def build_services(config: Optional[GuidedLookConfig] = None) -> Services:
    """Wire the production collaborators from configuration."""
    config = config or load_config()
    repository = get_repository(config.database_url, config)
    database_url = config.database_url or ""
    if database_url.startswith(("postgres://", "postgresql://")):
        gateway = PostgresQuotaGateway(database_url)
        rate_limiter, ledger = gateway, gateway
    else:
        rate_limiter, ledger = InMemoryRateLimiter(), InMemoryCreditLedger()

    generation = config.generation
    client = HttpGenerationClient(generation.base_url, generation.image_path, generation.tryon_path)
    orchestrator = GenerationOrchestrator(client, generation)
    stylist = PydanticAIStylist(config.chat.model, config.chat.model_attempts, config.chat.backoff_base_seconds)
    return Services(
        config=config,
        repository=repository,
        verifier=IdentityVerifier(config.auth),
        rate_limiter=rate_limiter,
        ledger=ledger,
        workflow=WorkflowController(repository, ledger, orchestrator, config),
        chat=ChatService(repository, ledger, stylist, config),
    )


def _error_response(request: Request, status_code: int, message: str, code: str, retry_after: Optional[int] = None):
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    headers = {"X-Request-Id": request_id}
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code, "requestId": request_id},
        headers=headers,
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    services = services or build_services()
    app = FastAPI(title="Guided Look")
    app.state.services = services

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        response = await call_next(request)
        response.headers["X-Request-Id"] = request.state.request_id
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return _error_response(request, exc.status_code, exc.message, exc.code, exc.retry_after_seconds)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error_response(request, 400, "Invalid request body", "bad_request")

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error for request {getattr(request.state, 'request_id', '-')}")
        return _error_response(request, 500, "Internal server error", "internal_error")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.post("/chat")
    async def chat(body: ChatRequest, authorization: Optional[str] = Header(default=None)):
        user_id = await asyncio.to_thread(services.verifier.verify, authorization)

        limits = services.config.rate_limit
        decision = await services.rate_limiter.check(user_id, limits.feature, limits.window_seconds, limits.max_requests)
        if not decision.allowed:
            message = BLOCKED_MESSAGE if decision.reason == "blocked" else RATE_LIMITED_MESSAGE
            raise RateLimited(message, retry_after_seconds=decision.retry_after_seconds or 60, reason=decision.reason)

        try:
            if body.is_guided_workflow():
                response = await services.workflow.handle_turn(user_id, body, authorization)
            else:
                response = await services.chat.respond(user_id, body)
        except ServiceError:
            raise
        except Exception:
            await services.rate_limiter.record_result(user_id, limits.feature, False)
            raise
        await services.rate_limiter.record_result(user_id, limits.feature, True)
        return JSONResponse(content=response.model_dump(by_alias=True, mode="json"))

    return app
