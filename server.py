import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ideator import settings
from ideator.conversation_store import ConversationStore
from ideator.db_connection import DbConnection
from ideator.dev_package import DevPackageBuilder
from ideator.llm_client import ChatLlmClient
from ideator.model_props import load_pipeline_config
from ideator.orchestrator import Orchestrator, SessionFinalizedError, SpecStoreError
from ideator.schemas import ChatRequest, DevPackageRequest
from ideator.spec_store import SpecStore
from ideator.streaming import StreamEvent, aclose_quietly, error_event, sse_encode

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("ideator_backend")

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
SWEEP_INTERVAL_SECONDS = 600


def _database_configured() -> bool:
    return bool(settings.DATABASE_URL or settings.DB_PASSWORD or settings.DB_SECRET_ID)


async def _sweep_loop(store: ConversationStore) -> None:
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
        removed = store.sweep_expired()
        if removed:
            logger.info(f"Conversation store: swept {removed} expired session(s)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = app.state
    if state.orchestrator is None:
        config = load_pipeline_config()
        provider = ChatLlmClient(
            vertex_project=settings.PROJECT_ID,
            vertex_region=settings.REGION,
            timeout=settings.LLM_TIMEOUT,
        )
        if state.spec_store is None and _database_configured():
            db = DbConnection()
            db.create_schema()
            state.spec_store = SpecStore(db.build_db_session_factory())
        elif state.spec_store is None:
            logger.warning("No database configured; specifications will not be persisted")
        if state.conversation_store is None:
            state.conversation_store = ConversationStore(
                ttl_seconds=settings.HISTORY_TTL_SECONDS,
                max_tokens=settings.HISTORY_MAX_TOKENS,
            )
        state.orchestrator = Orchestrator(
            provider,
            config,
            spec_store=state.spec_store,
            conversation_store=state.conversation_store,
        )
        await state.orchestrator.probe_streaming()
    if state.dev_package is None:
        state.dev_package = DevPackageBuilder(state.orchestrator.ladder)

    sweeper = None
    if state.conversation_store is not None:
        sweeper = asyncio.create_task(_sweep_loop(state.conversation_store))
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper


def _error_json(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


async def _sse(request: Request, events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    try:
        async for event in events:
            if await request.is_disconnected():
                logger.info("Client disconnected; stream stopped")
                break
            yield sse_encode(event)
    finally:
        await aclose_quietly(events)


async def _single_event(event: StreamEvent) -> AsyncIterator[StreamEvent]:
    yield event


def create_app(
    orchestrator: Optional[Orchestrator] = None,
    spec_store: Optional[SpecStore] = None,
    conversation_store: Optional[ConversationStore] = None,
    dev_package: Optional[DevPackageBuilder] = None,
) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.spec_store = spec_store if spec_store is not None else getattr(orchestrator, "spec_store", None)
    app.state.conversation_store = (
        conversation_store if conversation_store is not None else getattr(orchestrator, "conversation_store", None)
    )
    app.state.dev_package = dev_package
    if dev_package is None and orchestrator is not None:
        app.state.dev_package = DevPackageBuilder(orchestrator.ladder)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins for dev
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/agent-ideator/chat")
    async def agent_ideator_chat(body: ChatRequest, request: Request, maxDetail: Optional[str] = None):
        orchestrator: Orchestrator = request.app.state.orchestrator
        try:
            outcome = await orchestrator.handle_turn(body, max_detail=(str(maxDetail or "") == "1"))
        except SessionFinalizedError as e:
            return _error_json(409, str(e))
        except SpecStoreError as e:
            return _error_json(502, str(e))
        except Exception as e:
            logger.exception("Error in /agent-ideator/chat")
            return StreamingResponse(
                _sse(request, _single_event(error_event(str(e) or "error"))),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

        if outcome.is_stream:
            return StreamingResponse(
                _sse(request, outcome.events),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )
        return JSONResponse(content=outcome.final.model_dump(mode="json"))

    @app.get("/ideas/{idea_id}")
    async def get_idea(idea_id: str, request: Request, enrich: Optional[str] = None):
        store: SpecStore | None = request.app.state.spec_store
        if store is None:
            raise HTTPException(status_code=503, detail="Specification store is not configured")
        idea = store.load(idea_id)
        if idea is None:
            raise HTTPException(status_code=404, detail=f"Idea not found: {idea_id}")
        if str(enrich or "") == "1":
            idea = store.enrich_thin(idea)
        return {"ok": True, "idea": idea}

    @app.post("/ideas/{idea_id}/dev-package")
    async def create_dev_package(idea_id: str, request: Request, body: Optional[DevPackageRequest] = None):
        store: SpecStore | None = request.app.state.spec_store
        if store is None:
            raise HTTPException(status_code=503, detail="Specification store is not configured")
        idea = store.load(idea_id)
        if idea is None:
            raise HTTPException(status_code=404, detail=f"Idea not found: {idea_id}")

        builder: DevPackageBuilder = request.app.state.dev_package
        data = await builder.build_zip(idea, body.documents if body else [])
        zip_name = f"dev-package-{int(time.time() * 1000)}.zip"
        return Response(
            content=data,
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{zip_name}"'},
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
