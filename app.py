"""
FastAPI application — feature registry API.

Serves the configured feature store over HTTP so remote builds can use it
through ``storage.http.HttpStorage``.

Endpoints:
  GET /health                        — Health check
  GET /api/features?q=<regex>        — Search feature metadata by name
  GET /api/features/{name}           — Full feature (meta, snippet, test, files)
  GET /api/features/{name}/meta      — Feature metadata only
  GET /api/resolve?name=a,b          — Dependency-ordered features for a build

Run with:
    uvicorn app:app --port 8080
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Request

import config
from models.api import APIError, FeatureMetaModel, FeatureModel, ResolveResponse
from models.errors import CycleDetected, EmptyInput, NotFound, StoreError
from storage import FeatureStore, get_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

API_PREFIX = "/api"

router = APIRouter(prefix=API_PREFIX)


def _fail(status_code: int, code: str, message: str, **extra) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=APIError(code=code, message=message, **extra).model_dump(),
    )


def _store(request: Request) -> FeatureStore:
    store = request.app.state.store
    if store is None:
        raise _fail(503, "unavailable", "Feature store is not initialized")
    return store


def _translate(e: Exception) -> HTTPException:
    if isinstance(e, NotFound):
        return _fail(404, "not_found", str(e), feature=e.name)
    if isinstance(e, CycleDetected):
        return _fail(409, "cycle", str(e), cycle=e.cycle)
    if isinstance(e, EmptyInput):
        return _fail(400, "empty_input", str(e))
    if isinstance(e, ValueError):
        return _fail(400, "bad_request", str(e))
    return _fail(502, "store_error", str(e))


# ── Health ────────────────────────────────────────────────────────────

def health(request: Request):
    return {
        "status": "ok",
        "service": "feature-forge",
        "store": type(request.app.state.store).__name__ if request.app.state.store else None,
    }


# ── Features ──────────────────────────────────────────────────────────

@router.get("/features", response_model=list[FeatureMetaModel])
def search_features(request: Request, q: str = ""):
    """Search feature metadata; ``q`` is an unanchored regular expression."""
    try:
        metas = _store(request).search_meta(q)
    except (StoreError, ValueError) as e:
        raise _translate(e)
    return [FeatureMetaModel.from_meta(m) for m in metas]


@router.get("/features/{name}", response_model=FeatureModel)
def get_feature(request: Request, name: str):
    try:
        feature = _store(request).get_feature(name)
    except (NotFound, StoreError) as e:
        raise _translate(e)
    return FeatureModel.from_feature(feature)


@router.get("/features/{name}/meta", response_model=FeatureMetaModel)
def get_feature_meta(request: Request, name: str):
    try:
        meta = _store(request).get_meta(name)
    except (NotFound, StoreError) as e:
        raise _translate(e)
    return FeatureMetaModel.from_meta(meta)


@router.get("/resolve", response_model=ResolveResponse)
def resolve_features(request: Request, name: str = ""):
    """Resolve a comma-separated list of feature names with their dependencies."""
    names = [n.strip() for n in name.split(",") if n.strip()]
    try:
        resolved = _store(request).resolve(names)
    except (NotFound, CycleDetected, EmptyInput, StoreError) as e:
        raise _translate(e)
    return ResolveResponse.from_resolved(resolved)


def create_app(store: FeatureStore | None = None,
               settings: config.Settings | None = None) -> FastAPI:
    """Build the registry app. Without ``store`` one is created from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.store is None
        if owned:
            app.state.store = get_store(settings or config.load_settings())
            log.info("Serving features from %s", type(app.state.store).__name__)
        yield
        close = getattr(app.state.store, "close", None)
        if owned and close:
            close()

    app = FastAPI(
        title="Feature Forge Registry",
        description="Feature catalog for composing container images",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.add_api_route("/health", health, methods=["GET"])
    app.include_router(router)
    return app


app = create_app()
