import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from ChatBackend.config import APP_VERSION, Settings
from ChatBackend.database import init_db, make_engine, make_session_factory
from ChatBackend.errors import ChatBackendError, InternalError
from ChatBackend.services.ai.response_generator import ResponseGenerator
from ChatBackend.services.token_service import SessionIssuer
from ChatBackend.subapps.auth_routes import router as auth_router
from ChatBackend.subapps.chat_routes import router as chat_router
from ChatBackend.subapps.health_routes import router as health_router


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _error_body(message: str, **extra) -> dict:
    return {"success": False, "message": message, **extra}


def _install_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(ChatBackendError)
    async def _domain_error(request: Request, exc: ChatBackendError):
        extra = {"errors": exc.errors} if exc.errors else {}
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, **extra))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        errors = [f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()]
        return JSONResponse(status_code=400, content=_error_body("Validation error", errors=errors))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content=_error_body("Route not found", path=request.url.path))
        return JSONResponse(status_code=exc.status_code, content=_error_body(str(exc.detail)))

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        err = InternalError()
        detail = str(exc) if settings.debug else "Something went wrong"
        return JSONResponse(status_code=err.status_code, content=_error_body(err.message, error=detail))


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    generator: Optional[ResponseGenerator] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    engine = engine or make_engine(settings.database_url)
    generator = generator or ResponseGenerator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.auto_create_tables:
            init_db(engine)
        if generator.configured:
            logger.info("AI provider configured: %s (%s)", settings.ai_provider, settings.ai_model)
        else:
            logger.warning("AI provider not configured; replies will use the fallback message")
        yield
        await generator.aclose()

    app = FastAPI(title="Chat Backend", version=APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.generator = generator
    app.state.session_issuer = SessionIssuer(settings)
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app, settings)

    app.include_router(auth_router, prefix=settings.api_prefix)
    app.include_router(chat_router, prefix=settings.api_prefix)
    app.include_router(health_router, prefix=settings.api_prefix)

    @app.get("/")
    def root():
        return {
            "message": "Chat Backend Server is running!",
            "version": APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


_configure_logging()

app = create_app()
