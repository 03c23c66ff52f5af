"""Envelope and request schemas for the HTTP API."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    timestamp: datetime
    request_id: str
    api_version: str = "v1"


class ApiResponse(BaseModel):
    """Standard success envelope."""
    status: bool = True
    message: str = "Operation successful"
    data: Dict[str, Any] = Field(default_factory=dict)
    meta: ResponseMeta


class ErrorDetail(BaseModel):
    """Problem details (RFC 7807)."""
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime
    errors: list = Field(default_factory=list)


class EntityType(str, Enum):
    LIMIT = "limit"
    DEDUCTIBLE = "deductible"
    COVERAGE = "coverage"


class ValidateRequest(BaseModel):
    entity_type: EntityType = Field(..., alias="entityType")
    entity: Dict[str, Any]
