"""FastAPI application."""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from typeforge.api.middleware import RequestIdMiddleware, get_request_id
from typeforge.bootstrap import Runtime, build_runtime
from typeforge.core.types import normalize_key
from typeforge.errors import EntityError, HookStepFailedError, UnknownTypeError
from typeforge.hooks import HOOK_PHASES
from typeforge.hooks.actions import EnrichLimits
from typeforge.metadata.validator import validate_datatypes_dir
from typeforge.persistence import StorageConfig, create_storage

logger = logging.getLogger(__name__)

# Global runtime (initialized on startup)
runtime: Runtime | None = None

ERROR_STATUS: dict[str, int] = {
    "UnknownType": 404,
    "UnpublishedType": 404,
    "EntityNotFound": 404,
    "ValidationFailed": 400,
    "RefMissing": 400,
    "InvalidHookArgs": 400,
    "UniqueViolation": 409,
    "RefRestrict": 409,
}


def datatypes_dir_from_env() -> Path:
    return Path(os.environ.get("TYPEFORGE_DATATYPES_DIR") or "datatypes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    global runtime

    datatypes_path = datatypes_dir_from_env()

    # Schema-check datatype files (warn on errors, the loader decides what is fatal)
    schema_issues = validate_datatypes_dir(datatypes_path)
    for issue in schema_issues:
        if issue.severity == "error":
            logger.error("Datatype schema error: %s", issue)
        else:
            logger.warning("Datatype schema warning: %s", issue)
    if schema_issues:
        logger.warning(
            "Datatype validation: %d issue(s). Run 'typeforge datatypes validate' for details.",
            len(schema_issues),
        )

    storage_config = StorageConfig.from_env()
    if storage_config.is_sqlite:
        sqlite_path = storage_config.url.replace("sqlite:///", "", 1)
        if sqlite_path and sqlite_path != ":memory:":
            Path(sqlite_path).parent.mkdir(parents=True, exist_ok=True)
    storage = create_storage(storage_config)

    runtime = await build_runtime(datatypes_path, storage, EnrichLimits.from_env())

    yield

    # Cleanup
    if runtime:
        await runtime.close()
        runtime = None


app = FastAPI(title="typeforge API", lifespan=lifespan)
app.add_middleware(RequestIdMiddleware)


def status_for(error: EntityError) -> int:
    if isinstance(error, HookStepFailedError) and isinstance(error.cause, EntityError):
        return status_for(error.cause)
    return ERROR_STATUS.get(error.code, 500)


@app.exception_handler(EntityError)
async def entity_error_handler(request: Request, exc: EntityError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())


def _runtime() -> Runtime:
    if runtime is None:
        raise HTTPException(500, "Not initialized")
    return runtime


class CreateRequest(BaseModel):
    """Request body for create operations."""
    data: dict[str, Any]


class UpdateRequest(BaseModel):
    """Request body for update operations."""
    data: dict[str, Any]


# --- Entity CRUD ---


@app.get("/api/entities/{entity}")
async def list_entities(entity: str, request: Request):
    """List entities; query params are page, pageSize, sortBy, sortDir and field filters."""
    query: dict[str, Any] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        query[key] = values if len(values) > 1 else values[0]
    return await _runtime().entities.list(entity, query, request_id=get_request_id(request))


@app.post("/api/entities/{entity}", status_code=201)
async def create_entity(entity: str, body: CreateRequest, request: Request):
    return await _runtime().entities.create(entity, body.data, request_id=get_request_id(request))


@app.get("/api/entities/{entity}/{id}")
async def get_entity(entity: str, id: str, request: Request):
    return await _runtime().entities.get(entity, id, request_id=get_request_id(request))


@app.patch("/api/entities/{entity}/{id}")
async def update_entity(entity: str, id: str, body: UpdateRequest, request: Request):
    return await _runtime().entities.update(
        entity, id, body.data, request_id=get_request_id(request)
    )


@app.delete("/api/entities/{entity}/{id}")
async def delete_entity(entity: str, id: str, request: Request):
    return await _runtime().entities.delete(entity, id, request_id=get_request_id(request))


# --- Hooks ---


@app.get("/api/hooks/manifest")
async def get_hook_manifest():
    """Every type with hooks, and its non-empty phase flows in execution order."""
    store = _runtime().hook_store
    types = []
    for type_key in store.type_keys():
        phases = {}
        for phase in HOOK_PHASES:
            flow = store.get_flow(type_key, phase)
            if flow:
                phases[phase] = [step.to_dict() for step in flow]
        types.append({"typeKey": type_key, "phases": phases})
    return {"types": types}


# --- Discovery ---


@app.get("/api/discovery/relations/{entity}")
async def get_relations(entity: str):
    """Reference edges into and out of a datatype."""
    rt = _runtime()
    definition = rt.registry.get(entity)
    if definition is None:
        raise UnknownTypeError(normalize_key(entity))
    return {
        "type": definition.key_lower,
        "outgoing": [e.to_dict() for e in rt.integrity.outgoing(definition.key_lower)],
        "incoming": [e.to_dict() for e in rt.integrity.incoming(definition.key_lower)],
    }
