"""
FastAPI Application Module

HTTP and WebSocket surface of the marketplace chat: buyers contact farmers
about listings, exchange messages, and follow conversations live.

Key Features:
- Canonical conversation per (listing, buyer, farmer), safe under create races
- Message sends with participation checks and best-effort previews
- Live message stream per conversation over WebSocket
- Rate limiting, structured logging, Prometheus metrics and OpenTelemetry

The caller's identity comes from the ``X-Party-Id`` header set by the
authenticating proxy in front of this service.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import generate_latest
from pydantic import BaseModel, Field
from structlog import get_logger

from ..config import Settings, get_settings
from ..domain.errors import ChatError, SubscriptionError
from ..domain.models import ConversationDetail, ConversationSummary, Message
from ..logging_config import configure_logging
from ..metrics import CUSTOM_REGISTRY, ERRORS, REQUESTS
from ..realtime.feed import Subscription
from ..repositories.base import Repository
from ..repositories.memory import InMemoryRepository
from ..services.chat import ChatService
from ..services.identity import HeaderIdentityProvider
from .rate_limiter import RateLimiter, RateLimitExceeded, rate_limit_key

logger = get_logger()


class ResolveConversationRequest(BaseModel):
    """Contact another party, optionally about a listing"""
    other_party_id: str = Field(min_length=1)
    topic_id: Optional[str] = None


class ResolveConversationResponse(BaseModel):
    conversation_id: UUID


class MessageCreate(BaseModel):
    """Defines the structure for message creation requests"""
    body: str


def get_chat_service(request: Request) -> ChatService:
    """Chat operations bound to the caller of this request"""
    return ChatService(
        request.app.state.repository,
        HeaderIdentityProvider(request.headers),
        request.app.state.settings,
    )


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[Repository] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)
    repository = repository or InMemoryRepository()
    rate_limiter = RateLimiter(rate_limit=settings.rate_limit, time_window=settings.rate_window)
    if isinstance(repository, InMemoryRepository):
        repository.feed.buffer_size = settings.subscription_buffer

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handles app startup/shutdown and resource management"""
        await rate_limiter.start()
        logger.info("application_startup_complete")

        yield

        repository.feed.close()
        await rate_limiter.stop()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title=settings.app_name,
        description="Buyer and farmer conversations about marketplace listings",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.repository = repository
    app.state.rate_limiter = rate_limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Set up request tracing
    FastAPIInstrumentor.instrument_app(app)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Tracks requests and enforces rate limits"""
        logger.info("request_started", method=request.method, path=request.url.path)
        REQUESTS.labels(path=request.url.path).inc()
        try:
            await rate_limiter.check_rate_limit(rate_limit_key(request))
        except RateLimitExceeded as e:
            return JSONResponse(
                status_code=429,
                content={"detail": str(e)},
                headers={"Retry-After": str(e.retry_after)},
            )
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("request_failed", path=request.url.path, error=str(e))
            raise

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        ERRORS.labels(error_code=exc.error_code).inc()
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("chat_error", path=request.url.path, error_code=exc.error_code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    @app.post("/conversations", response_model=ResolveConversationResponse)
    async def resolve_conversation(
        payload: ResolveConversationRequest,
        chat: ChatService = Depends(get_chat_service),
    ) -> ResolveConversationResponse:
        """Returns the conversation with another party, creating it on first contact"""
        conversation_id = await chat.resolve_conversation(payload.other_party_id, payload.topic_id)
        return ResolveConversationResponse(conversation_id=conversation_id)

    @app.get("/conversations", response_model=List[ConversationSummary])
    async def list_conversations(
        limit: int = 100,
        offset: int = 0,
        chat: ChatService = Depends(get_chat_service),
    ) -> List[ConversationSummary]:
        """Lists the caller's conversations, most recent activity first"""
        return await chat.list_conversations(limit=limit, offset=offset)

    @app.get("/conversations/{conversation_id}", response_model=ConversationDetail)
    async def get_conversation(
        conversation_id: UUID,
        chat: ChatService = Depends(get_chat_service),
    ) -> ConversationDetail:
        return await chat.get_conversation(conversation_id)

    @app.get("/conversations/{conversation_id}/messages", response_model=List[Message])
    async def get_messages(
        conversation_id: UUID,
        limit: int = 100,
        offset: int = 0,
        chat: ChatService = Depends(get_chat_service),
    ) -> List[Message]:
        """Gets paginated message history for a conversation"""
        return await chat.get_messages(conversation_id, limit=limit, offset=offset)

    @app.post("/conversations/{conversation_id}/messages", response_model=Message)
    async def send_message(
        conversation_id: UUID,
        payload: MessageCreate,
        chat: ChatService = Depends(get_chat_service),
    ) -> Message:
        return await chat.send_message(conversation_id, payload.body)

    @app.websocket("/conversations/{conversation_id}/events")
    async def conversation_events(websocket: WebSocket, conversation_id: UUID) -> None:
        """Streams every new message of the conversation until the client leaves"""
        chat = ChatService(repository, HeaderIdentityProvider(websocket.headers), settings)
        await websocket.accept()
        try:
            async with chat.open_subscription(conversation_id) as subscription:
                await websocket.send_json(
                    {"type": "subscribed", "data": {"conversation_id": str(conversation_id)}}
                )
                forward = asyncio.create_task(_forward(websocket, subscription))
                try:
                    while True:
                        await websocket.receive_text()
                except WebSocketDisconnect:
                    logger.info("event_stream_disconnected", conversation_id=str(conversation_id))
                finally:
                    forward.cancel()
                    await asyncio.gather(forward, return_exceptions=True)
        except ChatError as e:
            ERRORS.labels(error_code=e.error_code).inc()
            await websocket.send_json({"type": "error", "data": e.to_dict()})
            await websocket.close(code=1008)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics():
        """Provides Prometheus metrics for system monitoring"""
        return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")

    return app


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    try:
        async for message in subscription:
            await websocket.send_json(
                {"type": "message.created", "data": message.model_dump(mode="json")}
            )
    except SubscriptionError as e:
        await websocket.send_json({"type": "error", "data": e.to_dict()})
        await websocket.close(code=1011)


app = create_app()
