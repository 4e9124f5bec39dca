import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import OrderingError, ValidationError
from app.core.logging_config import setup_logging

from app.application.orchestrator import Orchestrator
from app.interfaces import api_routes

logger = logging.getLogger(__name__)


# ---------------------------------------------------------
# COMPOSITION ROOT
# ---------------------------------------------------------
def build_orchestrator() -> Orchestrator:
    """Wire the production services. A dead session store aborts startup."""
    from app.infrastructure.database import Base, engine
    from app.infrastructure.openai_service import OpenAIService
    from app.infrastructure.repositories.order_repository import SqlOrderRepository
    from app.infrastructure.state_manager import build_session_store

    session_store = build_session_store()
    Base.metadata.create_all(bind=engine)
    return Orchestrator(
        ai_service=OpenAIService(),
        session_store=session_store,
        order_repo=SqlOrderRepository(),
        chat_mode=settings.CHAT_MODE,
        history_limit=settings.HISTORY_LIMIT,
    )


def _error_body(message: str) -> dict:
    return {"error": message, "response": message}


async def ordering_error_handler(request: Request, exc: OrderingError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.user_message))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info(f"{request.method} {request.url.path} -> 400: {exc.errors()}")
    return JSONResponse(status_code=400, content=_error_body(ValidationError.user_message))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=_error_body(OrderingError.user_message))


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)
        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = build_orchestrator()
        logger.info(f"🚀 {settings.PROJECT_NAME} ready ({app.state.orchestrator.chat_mode} mode)")
        yield

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(OrderingError, ordering_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_routes.router)
    return app


app = create_app()
