import logging
from dataclasses import dataclass
from pathlib import Path

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chronicle_weaver import config
from chronicle_weaver.credentials import (
    CredentialSource,
    CredentialStore,
    EnvCredentials,
    LayeredCredentials,
)
from chronicle_weaver.dispatch import AIService, build_service
from chronicle_weaver.errors import (
    AuthenticationError,
    ParseError,
    StorageCapacityError,
    TurnInProgressError,
    UnsupportedProviderError,
)
from chronicle_weaver.game import GameSession
from chronicle_weaver.routes import router
from chronicle_weaver.saves import SaveStore
from chronicle_weaver.store import LocalStore

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything one running app instance shares between requests."""

    store: LocalStore
    credentials: CredentialStore
    credential_source: CredentialSource
    service: AIService
    saves: SaveStore
    session: GameSession


def create_runtime(data_dir: Path, capacity: int | None = None) -> Runtime:
    store = LocalStore(data_dir, capacity or config.storage_capacity())
    credentials = CredentialStore(store)
    source = LayeredCredentials(credentials, EnvCredentials())
    preferences = config.get_config(store)
    service = build_service(source, preferences)
    saves = SaveStore(store)
    return Runtime(
        store=store,
        credentials=credentials,
        credential_source=source,
        service=service,
        saves=saves,
        session=GameSession(service, saves, preferences),
    )


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthenticationError)
    async def auth_error(request: Request, exc: AuthenticationError):
        return JSONResponse(
            status_code=401,
            content={"detail": AuthenticationError.code, "provider": exc.provider},
        )

    @app.exception_handler(UnsupportedProviderError)
    async def unsupported_provider(request: Request, exc: UnsupportedProviderError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(TurnInProgressError)
    async def turn_in_progress(request: Request, exc: TurnInProgressError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(StorageCapacityError)
    async def storage_full(request: Request, exc: StorageCapacityError):
        logger.warning("local store full: %s", exc)
        return JSONResponse(status_code=507, content={"detail": str(exc)})

    @app.exception_handler(ParseError)
    async def parse_error(request: Request, exc: ParseError):
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(httpx.HTTPError)
    async def upstream_error(request: Request, exc: httpx.HTTPError):
        logger.warning("upstream failure: %r", exc)
        return JSONResponse(status_code=502, content={"detail": f"Provider request failed: {exc}"})


def create_app(data_dir: Path | None = None) -> FastAPI:
    resolved = data_dir or config.data_dir()

    app = FastAPI(title="Chronicle Weaver")
    app.state.runtime = create_runtime(resolved)
    app.include_router(router, prefix="/api")
    _install_error_handlers(app)
    return app
