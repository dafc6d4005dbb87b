# gateway/api.py
from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, settings as default_settings
from .connection import ConnectionHandler, ConnectionHub
from .core import RetrievalPipeline
from .heartbeat import HeartbeatScheduler
from .index import SimilarityIndex
from .llm import OllamaClient
from .prompting import PromptBuilder
from .sessions import SessionRegistry

log = logging.getLogger(__name__)

# Sicherheits-Header für alle HTTP-Antworten (Standardsatz wie bei helmet)
SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'self'; object-src 'none'",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Frame-Options": "SAMEORIGIN",
}


def create_app(_settings: Optional[Settings] = None, llm: Optional[OllamaClient] = None) -> FastAPI:
    """
    Baut alle Services explizit zusammen und hängt sie an app.state.
    `llm` kann in Tests durch einen Client mit Mock-Transport ersetzt werden.
    """
    _settings = _settings or default_settings

    index = SimilarityIndex()
    llm = llm or OllamaClient(_settings)
    prompting = PromptBuilder(_settings.CORPUS_TITLE)
    pipeline = RetrievalPipeline(index, prompting, llm, top_k=_settings.TOP_K)
    registry = SessionRegistry(_settings.DEFAULT_DISPLAY_NAME)
    hub = ConnectionHub()
    handler = ConnectionHandler(registry, pipeline, hub, greeting_text=_settings.GREETING_TEXT)
    heartbeat = HeartbeatScheduler(hub, interval=_settings.HEARTBEAT_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Korpus: bei explizit konfiguriertem Pfad ist ein kaputtes JSON fatal
        corpus_path = _settings.EMBEDDING_FILE_PATH
        await index.load(corpus_path, strict=corpus_path is not None)

        await llm.startup()
        try:
            await llm.warmup()
        except Exception as e:
            log.warning(f"Warmup failed: {e}")

        heartbeat.start()
        yield

        # Shutdown
        await heartbeat.stop()
        await llm.shutdown()

    app = FastAPI(title="Chat Gateway", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.state.settings = _settings
    app.state.index = index
    app.state.llm = llm
    app.state.pipeline = pipeline
    app.state.registry = registry
    app.state.hub = hub
    app.state.handler = handler
    app.state.heartbeat = heartbeat

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"message": "Not Found"})
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})

    # ---------- Endpoints ----------
    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "chunks": len(index),
            "sessions": len(registry),
            "connections": len(hub),
        }

    @app.get("/chat")
    def chat_route():
        return {"message": "Chat Route"}

    @app.websocket("/ws")
    async def ws_endpoint(websocket: WebSocket):
        """
        WebSocket /ws?uuid=<uuid>&userName=<name>
        Ausgehend: init, incoming (Begrüßung/Antworten), outgoing (Echo),
        heartbeat, error.
        """
        await handler.handle(websocket)

    return app


app = create_app()
