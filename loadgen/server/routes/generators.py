"""
Load Generation Controller - Generator Admin Endpoints

Endpoint Design:
- GET    /generators                    - List generators with runtime state
- GET    /generators/{id}               - One generator
- POST   /generators                    - Add or update (reconfigure in place)
- PUT    /generators                    - Sync the whole list
- DELETE /generators/{id}               - Abruptly stop and remove
- POST   /generators/{id}/toggle        - Start if idle, stop if active
- POST   /generators/toggle?short_name= - Same, selected by short name

Mutations require ``X-Admin-Token`` when an admin token is configured and
are saved to the generator store.
"""

import secrets
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from loadgen.observability.logging import get_logger
from loadgen.runtime.configuration import (
    GeneratorConfig,
    RegexImmediateConfig,
    SingleJobRampUpConfig,
    generator_from_config,
)
from loadgen.runtime.controller import GeneratorController
from loadgen.server.config import get_config
from loadgen.server.dependencies import get_controller, get_store

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# MODELS
# =============================================================================


class GeneratorStateResponse(BaseModel):
    mode: str = Field(description="idle, ramp_up, load_test or ramp_down")
    active: bool
    queued_count: int
    running_count: int
    total_count: int
    start_time_millis: Optional[int] = Field(None, description="Ramp-up start (ramp-up generators only)")


class GeneratorResponse(BaseModel):
    config: Dict[str, Any]
    state: GeneratorStateResponse


class GeneratorListResponse(BaseModel):
    count: int
    generators: List[GeneratorResponse]


class SyncRequest(BaseModel):
    generators: List[GeneratorConfig] = Field(description="Complete desired generator list")


class SyncResponse(BaseModel):
    added: List[str]
    removed: List[str]
    updated: List[str]


class DeleteResponse(BaseModel):
    generator_id: str
    removed: bool


# =============================================================================
# DEPENDENCIES
# =============================================================================


async def require_admin(
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
) -> None:
    """Reject mutations without the configured admin token."""
    expected = get_config().admin_token
    if not expected:
        return
    if x_admin_token is None or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrative authorization required"
        )


def _controller() -> GeneratorController:
    controller = get_controller()
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Controller not initialized"
        )
    return controller


def _persist(controller: GeneratorController) -> None:
    store = get_store()
    if store is not None:
        store.save(controller.registry.generators())


def _response(controller: GeneratorController, generator_id: str) -> GeneratorResponse:
    snapshot = controller.status(generator_id)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown generator id: {generator_id}"
        )
    return GeneratorResponse(**snapshot)


# =============================================================================
# ROUTES
# =============================================================================


@router.get("", response_model=GeneratorListResponse)
def list_generators() -> GeneratorListResponse:
    controller = _controller()
    generators = [GeneratorResponse(**s) for s in controller.status_all()]
    return GeneratorListResponse(count=len(generators), generators=generators)


@router.get("/{generator_id}", response_model=GeneratorResponse)
def get_generator(generator_id: str) -> GeneratorResponse:
    return _response(_controller(), generator_id)


@router.post("", response_model=GeneratorResponse, dependencies=[Depends(require_admin)])
def add_or_update_generator(
    config: Union[RegexImmediateConfig, SingleJobRampUpConfig] = Body(..., discriminator="kind"),
) -> GeneratorResponse:
    """
    Register a generator, or reconfigure a known id in place.

    Raises:
        400: Invalid configuration or duplicate short name
    """
    controller = _controller()
    generator = generator_from_config(config)
    controller.register(generator)
    _persist(controller)

    logger.info("Generator saved", extra={
        "generator_id": generator.generator_id,
        "short_name": generator.short_name,
    })
    return _response(controller, generator.generator_id)


@router.put("", response_model=SyncResponse, dependencies=[Depends(require_admin)])
def sync_generators(request: SyncRequest) -> SyncResponse:
    """
    Replace the configured generator list.

    Generators missing from the list are stopped abruptly and removed;
    known ids keep their runtime state.
    """
    controller = _controller()
    generators = [generator_from_config(c) for c in request.generators]
    result = controller.sync(generators)
    _persist(controller)
    return SyncResponse(**result.to_dict())


@router.delete("/{generator_id}", response_model=DeleteResponse, dependencies=[Depends(require_admin)])
def delete_generator(generator_id: str) -> DeleteResponse:
    """
    Abruptly stop and remove a generator.

    Raises:
        404: Unknown generator id
    """
    controller = _controller()
    if not controller.unregister(generator_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown generator id: {generator_id}"
        )
    _persist(controller)
    return DeleteResponse(generator_id=generator_id, removed=True)


@router.post("/toggle", response_model=GeneratorResponse, dependencies=[Depends(require_admin)])
def toggle_named_generator(
    short_name: str = Query(default="", description="Short name of the generator"),
) -> GeneratorResponse:
    """
    Toggle a generator selected by short name.

    Raises:
        400: Missing short name
        404: Unrecognized short name
    """
    controller = _controller()
    binding = controller.resolve_short_name(short_name)
    controller.toggle(binding.generator_id)
    return _response(controller, binding.generator_id)


@router.post("/{generator_id}/toggle", response_model=GeneratorResponse, dependencies=[Depends(require_admin)])
def toggle_generator(generator_id: str) -> GeneratorResponse:
    """
    Start the generator if idle, gracefully stop it if active.

    Raises:
        404: Unknown generator id
    """
    controller = _controller()
    controller.toggle(generator_id)
    return _response(controller, generator_id)
