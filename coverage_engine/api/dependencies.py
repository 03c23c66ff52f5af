"""FastAPI dependencies wiring the services to the process-wide database client."""

from typing import Annotated

from fastapi import Depends

from coverage_engine.core.config import settings
from coverage_engine.core.database import get_db_client
from coverage_engine.repositories.record_store import RecordStore
from coverage_engine.services.compatibility.compatibility_service import CompatibilityService
from coverage_engine.services.parsing.legacy_converter import LegacyConverter


async def get_record_store() -> RecordStore:
    return RecordStore.from_settings(get_db_client().session_maker, settings.store)


async def get_compatibility_service(
    store: Annotated[RecordStore, Depends(get_record_store)],
) -> CompatibilityService:
    return CompatibilityService(
        store,
        converter=LegacyConverter.from_settings(settings.migration),
        dual_write=settings.dual_write_enabled,
    )
