"""Local health-data routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from healthbot.api.dependencies import get_integrations
from healthbot.api.schemas import ManualReadingRequest
from healthbot.devices import MANUAL_ENTRY_ID
from healthbot.integrations import DeviceIntegrationService
from healthbot.models import HealthReading, ReadingType, unit_for, utcnow

router = APIRouter(prefix="/api/health-data", tags=["health-data"])


@router.get("", summary="Stored readings, optionally filtered by type", response_model=list[HealthReading])
async def list_readings(
    type: ReadingType | None = Query(None, description="Only readings of this type"),
    service: DeviceIntegrationService = Depends(get_integrations),
):
    if type is None:
        return await service.readings.get_all()
    return await service.readings.get_by_type(type)


@router.get("/latest/{reading_type}", summary="Most recent reading of a type")
async def latest_reading(reading_type: ReadingType, service: DeviceIntegrationService = Depends(get_integrations)):
    reading = await service.readings.get_latest(reading_type)
    if reading is None:
        return JSONResponse(status_code=404, content={"error": f"No {reading_type.value} readings"})
    return reading.model_dump(mode="json")


@router.post("", status_code=201, summary="Record a manual reading")
async def add_reading(req: ManualReadingRequest, service: DeviceIntegrationService = Depends(get_integrations)):
    reading = HealthReading(
        source=MANUAL_ENTRY_ID,
        timestamp=req.timestamp or utcnow(),
        type=req.type,
        value=req.value,
        unit=req.unit or unit_for(req.type),
        metadata=req.metadata,
    )
    stored = await service.record_manual(reading)
    return {"stored": stored, "reading": reading.model_dump(mode="json")}
