"""
FastAPI Routes for CareerChat

REST and streaming endpoints for the chat assistant, plus the internal
session-state surface keyed by an opaque session key.

Run with: uvicorn careerchat.app:app --reload
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, APIRouter, HTTPException, Request, Body
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from careerchat import __version__
from careerchat.api.chat_handler import ChatHandler
from careerchat.api.streaming import STREAM_HEADERS, drain_background_tasks
from careerchat.core.config import Settings, get_settings
from careerchat.core.conversation_store import ConversationStore
from careerchat.core.exceptions import CareerChatError, ThreadNotFoundError
from careerchat.core.llm_client import CompletionProvider, build_provider_chain
from careerchat.core.schemas import (
    ChatStreamRequest, CreateThreadRequest, QuestionRequest, StateUpdate
)
from careerchat.core.state_storage import StateStorage, create_state_storage
from careerchat.services.orchestrator import ChatOrchestrator
from careerchat.services.session_state import SessionRegistry

logger = logging.getLogger(__name__)


# ============================================================================
# Chat Endpoints
# ============================================================================

chat_router = APIRouter(prefix="/api/chat", tags=["chat"])


@chat_router.get("/threads")
async def list_threads(request: Request):
    """List threads, most recently updated first."""
    threads = await request.app.state.store.list_threads()
    return {"threads": [t.model_dump(mode="json") for t in threads]}


@chat_router.post("/threads")
async def create_thread(request: Request, body: Optional[CreateThreadRequest] = None):
    """Create a thread."""
    title = body.title if body else None
    thread = await request.app.state.store.create_thread(title)
    return {"thread": thread.model_dump(mode="json")}


@chat_router.get("/threads/{thread_id}/messages")
async def get_messages(thread_id: str, request: Request):
    """Messages of a thread, oldest first."""
    messages = await request.app.state.store.list(thread_id)
    return {"messages": [m.model_dump(mode="json") for m in messages]}


@chat_router.post("/threads/{thread_id}/stream")
async def stream_message(thread_id: str, request: Request,
                         body: Optional[ChatStreamRequest] = None):
    """
    Send a chat message and stream the reply.

    thread_id "new" starts a new thread. Errors found before streaming
    starts are HTTP errors; later failures arrive as an error frame.
    """
    body = body or ChatStreamRequest()
    handler: ChatHandler = request.app.state.chat_handler

    try:
        relay = await handler.process_message(
            thread_id=thread_id,
            message=body.user_text(),
            user_id=body.user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    headers = dict(STREAM_HEADERS)
    headers["X-Thread-Id"] = relay.thread_id
    return StreamingResponse(
        relay.frames(),
        media_type="text/event-stream",
        headers=headers,
    )


# ============================================================================
# Session State Endpoints
# ============================================================================

session_router = APIRouter(prefix="/internal/sessions/{session_key}", tags=["sessions"])


def _actor(request: Request, session_key: str):
    return request.app.state.sessions.get(session_key)


@session_router.get("/state")
async def get_state(session_key: str, request: Request):
    snapshot = await _actor(request, session_key).get_state()
    return snapshot.model_dump(by_alias=True)


@session_router.post("/state")
async def set_state(session_key: str, request: Request,
                    body: Optional[StateUpdate] = None):
    """Set the current thread pointer and/or merge context."""
    body = body or StateUpdate()
    await _actor(request, session_key).set_state(
        StateUpdate(current_thread_id=body.current_thread_id, context=body.context)
    )
    return {"success": True}


@session_router.get("/questions")
async def get_questions(session_key: str, request: Request):
    questions = await _actor(request, session_key).get_questions()
    return questions.model_dump()


@session_router.post("/questions")
async def record_question(session_key: str, request: Request,
                          body: Optional[QuestionRequest] = None):
    """Mark a question as asked."""
    if body and body.question_id:
        await _actor(request, session_key).record_question_asked(body.question_id)
    return {"success": True}


@session_router.post("/answers")
async def record_answer(session_key: str, request: Request,
                        body: Optional[QuestionRequest] = None):
    """Mark a question as answered; it stops being pending."""
    if body and body.question_id:
        await _actor(request, session_key).record_answer(body.question_id)
    return {"success": True}


@session_router.get("/context")
async def get_context(session_key: str, request: Request):
    return await _actor(request, session_key).get_context()


@session_router.post("/context")
async def update_context(session_key: str, request: Request,
                         updates: Optional[Dict[str, Any]] = Body(default=None)):
    if updates:
        await _actor(request, session_key).update_context(updates)
    return {"success": True}


# ============================================================================
# App Factory
# ============================================================================

def load_profile(path: Optional[str]) -> Dict[str, Any]:
    """Read the job seeker profile JSON. A missing or broken file means no profile."""
    if not path:
        return {}
    try:
        with open(path, "r") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not load profile from {path}: {e}")
        return {}


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ConversationStore] = None,
    storage: Optional[StateStorage] = None,
    providers: Optional[List[CompletionProvider]] = None
) -> FastAPI:
    """
    Build the FastAPI app. Components not passed in are built from settings.
    """
    settings = settings or get_settings()
    store = store or ConversationStore(settings.database.url, echo=settings.database.echo)
    storage = storage or create_state_storage(settings)
    providers = providers or build_provider_chain(settings)

    sessions = SessionRegistry(storage, max_active=settings.session.max_active)
    orchestrator = ChatOrchestrator(
        store=store,
        sessions=sessions,
        providers=providers,
        persona=settings.chat.persona,
        profile=load_profile(settings.chat.profile_path),
        chunk_size=settings.chat.chunk_size,
        chunk_delay=settings.chat.chunk_delay_ms / 1000.0,
    )
    chat_handler = ChatHandler(
        orchestrator, store, sessions,
        response_timeout=settings.chat.response_timeout_seconds,
        default_user_id=settings.chat.default_user_id,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{settings.app_name} API starting up...")
        logger.info(f"Providers: {', '.join(p.name for p in providers)}")
        await store.init_models()
        yield
        logger.info(f"{settings.app_name} API shutting down...")
        await drain_background_tasks(timeout=settings.chat.response_timeout_seconds)
        await storage.close()
        await store.close()

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Job-search chat assistant",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.store = store
    app.state.storage = storage
    app.state.sessions = sessions
    app.state.orchestrator = orchestrator
    app.state.chat_handler = chat_handler

    @app.exception_handler(ThreadNotFoundError)
    async def thread_not_found_handler(request: Request, exc: ThreadNotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(CareerChatError)
    async def careerchat_error_handler(request: Request, exc: CareerChatError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=500, content={"detail": exc.to_dict()})

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__
        }

    app.include_router(chat_router)
    app.include_router(session_router)
    return app
