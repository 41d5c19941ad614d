import contextlib
import json
import logging
from typing import Annotated, Awaitable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from tk700.dependencies import get_monitor, get_power_manager, get_projector_client
from tk700.models.projector import (
    ApiResponse, BrightnessRequest, PictureModeRequest, PowerRequest, ValueRequest, VolumeRequest,
)
from tk700.services.poller import ProjectorMonitor
from tk700.services.power_state import PowerStateManager
from tk700.services.projector_client import ProjectorClient
from tk700.services.result import attempt

router = APIRouter(tags=["projector"])
log = logging.getLogger("tk700.router.projector")

ProjectorDep = Annotated[ProjectorClient, Depends(get_projector_client)]
PowerDep = Annotated[PowerStateManager, Depends(get_power_manager)]
MonitorDep = Annotated[ProjectorMonitor, Depends(get_monitor)]


async def handle(operation: Awaitable) -> JSONResponse:
    """Run one projector operation and wrap it in the {error, data} envelope."""
    result = await attempt(operation)
    if not result.ok:
        log.warning("Projector command failed: %s", result.error.message)
    return JSONResponse(result.to_response(), status_code=200 if result.ok else 500)


# ==================== POWER ====================

@router.get("/power-state", response_model=ApiResponse)
async def get_power_state(projector: ProjectorDep, power: PowerDep, monitor: MonitorDep):
    """Fresh power read folded into the state machine; a failed read leaves the state as is."""
    reading = await attempt(projector.get_power_status())
    power.update_from_projector(reading.or_none())
    monitor.publish_power()
    return ApiResponse(data=power.get_state_info().to_dict())

@router.get("/power")
async def get_power(projector: ProjectorDep):
    return await handle(projector.get_power_status())

@router.post("/power")
async def set_power(body: PowerRequest, projector: ProjectorDep, power: PowerDep, monitor: MonitorDep):
    log.info("power: on=%s", body.on)
    power.initiate_transition(body.on)
    monitor.publish_power()
    return await handle(projector.set_power(body.on))

# ==================== READINGS ====================

@router.get("/temperature")
async def get_temperature(projector: ProjectorDep):
    return await handle(projector.get_temperature())

@router.get("/fan")
async def get_fan(projector: ProjectorDep):
    return await handle(projector.get_fan_speed())

# ==================== AUDIO ====================

@router.get("/volume")
async def get_volume(projector: ProjectorDep):
    return await handle(projector.get_volume())

@router.post("/volume")
async def set_volume(body: VolumeRequest, projector: ProjectorDep):
    log.info("volume: %s", body.level)
    return await handle(projector.set_volume(body.level))

# ==================== PICTURE ====================

@router.get("/picture-mode")
async def get_picture_mode(projector: ProjectorDep):
    return await handle(projector.get_picture_mode())

@router.post("/picture-mode")
async def set_picture_mode(body: PictureModeRequest, projector: ProjectorDep):
    log.info("picture-mode: %s", body.mode)
    return await handle(projector.set_picture_mode(body.mode))

@router.get("/brightness")
async def get_brightness(projector: ProjectorDep):
    return await handle(projector.get_brightness())

@router.post("/brightness")
async def set_brightness(body: BrightnessRequest, projector: ProjectorDep):
    if body.direction:
        return await handle(projector.adjust_brightness(body.direction))
    if body.value is not None:
        return await handle(projector.set_brightness(body.value))
    return JSONResponse({"error": "Invalid request", "data": None}, status_code=400)

@router.get("/contrast")
async def get_contrast(projector: ProjectorDep):
    return await handle(projector.get_contrast())

@router.post("/contrast")
async def set_contrast(body: ValueRequest, projector: ProjectorDep):
    return await handle(projector.set_contrast(body.value))

@router.get("/sharpness")
async def get_sharpness(projector: ProjectorDep):
    return await handle(projector.get_sharpness())

@router.post("/sharpness")
async def set_sharpness(body: ValueRequest, projector: ProjectorDep):
    return await handle(projector.set_sharpness(body.value))

# ==================== CACHED STATE ====================

@router.get("/snapshot", response_model=ApiResponse)
async def get_snapshot(monitor: MonitorDep):
    """Latest polled values; never touches the projector."""
    return ApiResponse(data=monitor.snapshot())

@router.get("/events")
async def events(req: Request, monitor: MonitorDep):
    async def gen():
        async with contextlib.aclosing(monitor.events()) as stream:
            async for name, value in stream:
                if await req.is_disconnected():
                    break
                yield f"event: {name}\ndata: {json.dumps(value)}\n\n"
    return StreamingResponse(gen(), media_type="text/event-stream")
