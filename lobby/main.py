import logging

from litestar import Litestar, Request
from litestar.datastructures import State
from litestar.di import Provide
from litestar.exceptions import HTTPException
from litestar.plugins.sqlalchemy import SQLAlchemyAsyncConfig, SQLAlchemyInitPlugin
from litestar.response import Response
from litestar.status_codes import (
    HTTP_403_FORBIDDEN,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from lobby.api.deps import provide_notifier, provide_store
from lobby.config import DATABASE_URL, DEBUG
from lobby.exceptions import AccessDeniedError, LobbyError, StoreError
from lobby.models import Base  # Import models Base for table creation
from lobby.notifier import ChangeNotifier
from lobby.routes import ROUTES
from lobby.store import RoomStore

logging.basicConfig(
    level=logging.DEBUG if DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger("Lobby")


# --- Exception handlers
def log_exceptions(request: Request, exc: Exception) -> Response:
    if isinstance(exc, HTTPException):
        return Response(
            content={"status_code": exc.status_code, "detail": exc.detail},
            status_code=exc.status_code,
            media_type="application/json"
        )
    logger.exception("Unhandled exception occurred", exc_info=exc)
    return Response(
        content={"detail": "Internal Server Error"},
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/json"
    )


def handle_lobby_error(request: Request, exc: LobbyError) -> Response:
    """Map domain errors that reach a route to HTTP answers."""
    if isinstance(exc, AccessDeniedError):
        status_code = HTTP_403_FORBIDDEN
    elif isinstance(exc, StoreError):
        status_code = HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = HTTP_409_CONFLICT
    logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return Response(
        content={"detail": str(exc), "error": exc.title},
        status_code=status_code,
        media_type="application/json"
    )


def create_app(database_url: str = DATABASE_URL, debug: bool = DEBUG) -> Litestar:
    """Build the application around one store and one change feed."""
    logger.info(f"Starting app in {'DEBUG' if debug else 'PRODUCTION'} mode")
    logger.info(f"Database URL: {database_url}")

    # --- SQLAlchemy config
    config = SQLAlchemyAsyncConfig(
        connection_string=database_url,
        session_dependency_key="session",
        metadata=Base.metadata,  # Use our models' metadata
        create_all=debug,  # Auto-create tables on startup (dev only)
    )
    notifier = ChangeNotifier()
    store = RoomStore(config.create_session_maker(), notifier)

    return Litestar(
        route_handlers=ROUTES,
        debug=debug,
        plugins=[SQLAlchemyInitPlugin(config)],
        state=State({"store": store, "notifier": notifier}),
        dependencies={
            "store": Provide(provide_store, sync_to_thread=False),
            "notifier": Provide(provide_notifier, sync_to_thread=False),
        },
        exception_handlers={
            Exception: log_exceptions,
            LobbyError: handle_lobby_error,
        },
    )


# --- App init
app = create_app()
