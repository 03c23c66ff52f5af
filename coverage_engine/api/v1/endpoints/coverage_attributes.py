"""Coverage limit and deductible endpoints.

Every read and write goes through the compatibility accessors, so callers
see the same values whether a coverage has been migrated or not.
"""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status

from coverage_engine.api.dependencies import get_compatibility_service
from coverage_engine.schemas.api import ApiResponse, EntityType, ValidateRequest
from coverage_engine.schemas.coverage import Coverage, Deductible, Limit
from coverage_engine.services.compatibility.compatibility_service import (
    AttributeView,
    CompatibilityService,
)
from coverage_engine.utils.logging import get_logger
from coverage_engine.utils.responses import create_api_response, create_error_detail

LOGGER = get_logger(__name__)

router = APIRouter()

CoverageAccess = Annotated[CompatibilityService, Depends(get_compatibility_service)]

ENTITY_MODELS = {
    EntityType.LIMIT: Limit,
    EntityType.DEDUCTIBLE: Deductible,
    EntityType.COVERAGE: Coverage,
}


def _view_payload(view: AttributeView) -> Dict[str, Any]:
    return {
        "state": view.state.value,
        "source": view.source,
        "items": [item.model_dump(mode="json", by_alias=True) for item in view.items],
        "warnings": [warning.model_dump(mode="json", by_alias=True) for warning in view.warnings],
    }


def _not_found(request: Request, detail: str) -> HTTPException:
    error_detail = create_error_detail(
        title="Not Found",
        status=status.HTTP_404_NOT_FOUND,
        detail=detail,
        request=request,
    )
    return HTTPException(status_code=404, detail=error_detail.model_dump(mode="json"))


@router.get(
    "/{product_id}/coverages/{coverage_id}/limits",
    response_model=ApiResponse,
    summary="List coverage limits",
    operation_id="list_coverage_limits",
)
async def list_limits(
    request: Request, product_id: str, coverage_id: str, service: CoverageAccess
) -> Dict[str, Any]:
    view = await service.read_limit_view(product_id, coverage_id)
    return create_api_response(data=_view_payload(view), request=request)


@router.post(
    "/{product_id}/coverages/{coverage_id}/limits",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create or replace a coverage limit",
    operation_id="write_coverage_limit",
)
async def write_limit(
    request: Request, product_id: str, coverage_id: str, limit: Limit, service: CoverageAccess
) -> Dict[str, Any]:
    saved = await service.write_limit(product_id, coverage_id, limit)
    return create_api_response(data=saved, message="Limit saved", request=request)


@router.put(
    "/{product_id}/coverages/{coverage_id}/limits/{limit_id}",
    response_model=ApiResponse,
    summary="Replace a coverage limit",
    operation_id="replace_coverage_limit",
)
async def replace_limit(
    request: Request,
    product_id: str,
    coverage_id: str,
    limit_id: str,
    limit: Limit,
    service: CoverageAccess,
) -> Dict[str, Any]:
    saved = await service.write_limit(product_id, coverage_id, limit.model_copy(update={"id": limit_id}))
    return create_api_response(data=saved, message="Limit saved", request=request)


@router.delete(
    "/{product_id}/coverages/{coverage_id}/limits/{limit_id}",
    response_model=ApiResponse,
    summary="Delete a coverage limit",
    operation_id="delete_coverage_limit",
)
async def delete_limit(
    request: Request, product_id: str, coverage_id: str, limit_id: str, service: CoverageAccess
) -> Dict[str, Any]:
    if not await service.delete_limit(product_id, coverage_id, limit_id):
        raise _not_found(request, f"Limit {limit_id} not found on coverage {coverage_id}")
    return create_api_response(data={"id": limit_id}, message="Limit deleted", request=request)


@router.get(
    "/{product_id}/coverages/{coverage_id}/deductibles",
    response_model=ApiResponse,
    summary="List coverage deductibles",
    operation_id="list_coverage_deductibles",
)
async def list_deductibles(
    request: Request, product_id: str, coverage_id: str, service: CoverageAccess
) -> Dict[str, Any]:
    view = await service.read_deductible_view(product_id, coverage_id)
    return create_api_response(data=_view_payload(view), request=request)


@router.post(
    "/{product_id}/coverages/{coverage_id}/deductibles",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create or replace a coverage deductible",
    operation_id="write_coverage_deductible",
)
async def write_deductible(
    request: Request,
    product_id: str,
    coverage_id: str,
    deductible: Deductible,
    service: CoverageAccess,
) -> Dict[str, Any]:
    saved = await service.write_deductible(product_id, coverage_id, deductible)
    return create_api_response(data=saved, message="Deductible saved", request=request)


@router.put(
    "/{product_id}/coverages/{coverage_id}/deductibles/{deductible_id}",
    response_model=ApiResponse,
    summary="Replace a coverage deductible",
    operation_id="replace_coverage_deductible",
)
async def replace_deductible(
    request: Request,
    product_id: str,
    coverage_id: str,
    deductible_id: str,
    deductible: Deductible,
    service: CoverageAccess,
) -> Dict[str, Any]:
    saved = await service.write_deductible(
        product_id, coverage_id, deductible.model_copy(update={"id": deductible_id})
    )
    return create_api_response(data=saved, message="Deductible saved", request=request)


@router.delete(
    "/{product_id}/coverages/{coverage_id}/deductibles/{deductible_id}",
    response_model=ApiResponse,
    summary="Delete a coverage deductible",
    operation_id="delete_coverage_deductible",
)
async def delete_deductible(
    request: Request,
    product_id: str,
    coverage_id: str,
    deductible_id: str,
    service: CoverageAccess,
) -> Dict[str, Any]:
    if not await service.delete_deductible(product_id, coverage_id, deductible_id):
        raise _not_found(request, f"Deductible {deductible_id} not found on coverage {coverage_id}")
    return create_api_response(data={"id": deductible_id}, message="Deductible deleted", request=request)


@router.post(
    "/{product_id}/coverages/{coverage_id}/validate",
    response_model=ApiResponse,
    summary="Validate a limit, deductible or coverage without saving it",
    operation_id="validate_coverage_entity",
)
async def validate_entity(
    request: Request,
    product_id: str,
    coverage_id: str,
    payload: ValidateRequest,
    service: CoverageAccess,
) -> Dict[str, Any]:
    entity = ENTITY_MODELS[payload.entity_type].model_validate(payload.entity)
    if payload.entity_type is EntityType.COVERAGE:
        entity.id = entity.id or coverage_id
        entity.product_id = product_id
    result = await service.validate(entity, product_id, coverage_id)
    data = {
        "isValid": result.is_valid,
        "errors": [issue.model_dump(mode="json") for issue in result.errors],
        "warnings": [issue.model_dump(mode="json") for issue in result.warnings],
    }
    return create_api_response(data=data, request=request)


@router.get(
    "/{product_id}/migration-status",
    response_model=ApiResponse,
    summary="How many of a product's coverages use typed records",
    operation_id="get_migration_status",
)
async def migration_status(request: Request, product_id: str, service: CoverageAccess) -> Dict[str, Any]:
    return create_api_response(data=await service.migration_status(product_id), request=request)
