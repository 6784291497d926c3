import logging
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from notes_api import models  # noqa: F401  registers the tables on Base.metadata
from notes_api.api import auth as auth_routes
from notes_api.api import notes as notes_routes
from notes_api.api.deps import require_access_token
from notes_api.auth.gateway import AuthGateway
from notes_api.auth.oidc import OIDCProvider
from notes_api.config import Settings, get_settings
from notes_api.db import Base, build_database_url, create_db_engine, get_db, make_session_factory
from notes_api.errors import (
    AuthError,
    InvalidRequestError,
    NoteNotFoundError,
    StorageError,
    UnsupportedContentTypeError,
)
from notes_api.storage.files import FileIndexStore

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

openapi_tags = [
    {"name": "Health", "description": "Service health and readiness endpoints."},
    {"name": "Notes", "description": "CRUD operations for notes and their content."},
    {"name": "Auth", "description": "Login through the external OpenID Connect provider."},
]


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NoteNotFoundError)
    async def _not_found_handler(request: Request, exc: NoteNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(InvalidRequestError)
    @app.exception_handler(UnsupportedContentTypeError)
    async def _bad_request_handler(request: Request, exc: Exception) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "invalid request", "errors": exc.errors()},
        )

    @app.exception_handler(AuthError)
    async def _auth_handler(request: Request, exc: AuthError) -> JSONResponse:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
        return _error(status.HTTP_401_UNAUTHORIZED, str(exc))

    @app.exception_handler(StorageError)
    async def _storage_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error(
            "Storage failure on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "storage failure")

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Return JSON for unexpected errors.

        Clients always get a JSON body, and the real cause lands in the log.
        """
        logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None, oidc_provider: Optional[OIDCProvider] = None) -> FastAPI:
    """Build the notes API for the configured storage backend and auth mode."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Notes API",
        description="Personal notes with CRUD operations over a flat-file or SQL store.",
        version="1.0.0",
        openapi_tags=openapi_tags,
    )
    app.state.settings = settings

    if settings.storage_backend == "sql":
        engine = create_db_engine(build_database_url(settings))
        app.state.engine = engine
        app.state.session_factory = make_session_factory(engine)
        logger.info("Using SQL storage url=%s", engine.url.render_as_string(hide_password=True))
    else:
        logger.info("Using flat-file storage root=%s", settings.notes_root)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _log_requests(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "%s %s -> %s (%.1fms) request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
            request_id,
        )
        return response

    _register_exception_handlers(app)

    if settings.disable_auth:
        logger.warning("Disabling authentication - THIS SHOULD ONLY BE RUN FOR TESTING!")
        app.include_router(notes_routes.router)
    else:
        provider = oidc_provider or OIDCProvider.from_settings(settings)
        app.state.auth = AuthGateway(provider)
        app.include_router(notes_routes.router, dependencies=[Depends(require_access_token)])
        app.include_router(auth_routes.router)

    @app.on_event("startup")
    def _startup() -> None:
        if settings.storage_backend == "sql":
            try:
                Base.metadata.create_all(bind=app.state.engine)
            except Exception:
                logger.exception("Database initialization failed during startup (tables not created).")
        if not settings.disable_auth:
            # Refuse to serve without the provider configuration.
            app.state.auth.provider.load()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        if settings.storage_backend == "sql":
            app.state.engine.dispose()

    @app.get("/", tags=["Health"], summary="Health check", description="Returns a simple health payload.")
    def health_check() -> Dict[str, str]:
        """Health check endpoint used by monitoring."""
        return {"message": "Healthy"}

    if settings.storage_backend == "sql":

        @app.get(
            "/health/db",
            tags=["Health"],
            summary="Database health check",
            description=(
                "Verifies database connectivity by running a lightweight read-only query (SELECT 1). "
                "Returns status=up when the query succeeds, otherwise status=down with error details."
            ),
        )
        def health_check_db(db: Session = Depends(get_db)) -> Dict[str, Any]:
            """Database readiness endpoint."""
            try:
                value = db.execute(text("SELECT 1")).scalar_one()
                return {"status": "up", "backend": "sql", "query": "SELECT 1", "result": int(value)}
            except Exception as exc:
                # Report rather than raise so the details reach the caller.
                return {"status": "down", "backend": "sql", "error": str(exc)}

    else:

        @app.get(
            "/health/db",
            tags=["Health"],
            summary="Index health check",
            description="Verifies the flat-file index parses. Returns status=up or status=down with error details.",
        )
        def health_check_index() -> Dict[str, Any]:
            """Index readiness endpoint."""
            try:
                count = len(FileIndexStore(settings.notes_root).load())
                return {"status": "up", "backend": "file", "notes": count}
            except StorageError as exc:
                return {"status": "down", "backend": "file", "error": str(exc)}

    return app
