"""FastAPI application exposing the user resource over HTTP."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Body, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings, load_settings
from .controller import ResponseDescriptor, UserController
from .repository import UserRepository
from .schema import UserSchema
from .store import DocumentStore

logger = logging.getLogger("userbase.api")


def _respond(descriptor: ResponseDescriptor) -> JSONResponse:
    return JSONResponse(status_code=descriptor.status_code, content=jsonable_encoder(descriptor.body))


def _query_filter(request: Request) -> Dict[str, str]:
    return dict(request.query_params)


def create_app(
    *,
    settings: Settings | None = None,
    store: DocumentStore | None = None,
) -> FastAPI:
    """Build the HTTP application.

    Without an injected ``store`` the application creates one from
    ``settings.store_url`` and owns it: the connection is opened on startup
    and closed on shutdown. An injected store is opened if needed and left
    open for its owner to close.
    """

    if settings is None:
        settings = load_settings()

    owns_store = store is None
    if store is None:
        store = DocumentStore(settings.store_url, timeout=settings.store_timeout)

    repository = UserRepository(store, UserSchema(settings.schema))
    controller = UserController(repository)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        store.open()
        try:
            repository.initialize()
            logger.info("User service ready (store: %s)", store.path)
            yield
        finally:
            if owns_store:
                store.close()

    app = FastAPI(
        title="Userbase",
        description="CRUD service for user records kept in a document store",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.repository = repository
    app.state.controller = controller

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "Request body must be valid JSON", "errors": jsonable_encoder(exc.errors())},
        )

    @app.get("/health")
    def healthcheck() -> JSONResponse:
        if store.ping():
            return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok"})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable"},
        )

    @app.post("/users")
    def create_user(payload: Any = Body(default=None)) -> JSONResponse:
        return _respond(controller.create(payload))

    @app.get("/users")
    def list_users(request: Request) -> JSONResponse:
        return _respond(controller.list(_query_filter(request)))

    @app.put("/users")
    def update_matching_user(request: Request, payload: Any = Body(default=None)) -> JSONResponse:
        return _respond(controller.update_where(_query_filter(request), payload))

    @app.delete("/users")
    def delete_matching_user(request: Request) -> JSONResponse:
        return _respond(controller.delete_where(_query_filter(request)))

    @app.get("/users/{user_id}")
    def read_user(user_id: str) -> JSONResponse:
        return _respond(controller.get(user_id))

    @app.put("/users/{user_id}")
    def update_user(user_id: str, payload: Any = Body(default=None)) -> JSONResponse:
        return _respond(controller.update(user_id, payload))

    @app.patch("/users/{user_id}")
    def patch_user(user_id: str, payload: Any = Body(default=None)) -> JSONResponse:
        return _respond(controller.update(user_id, payload))

    @app.delete("/users/{user_id}")
    def delete_user(user_id: str) -> JSONResponse:
        return _respond(controller.delete(user_id))

    return app


__all__ = ["create_app"]
