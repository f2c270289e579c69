"""
Device endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from datetime import datetime, timezone
import structlog

from session_monitor.api.dependencies import get_collector
from session_monitor.collectors.event_collector import EventCollector
from session_monitor.schemas.device import DeviceResponse, DeviceListResponse

logger = structlog.get_logger(__name__)
router = APIRouter()

@router.get("/devices", response_model=DeviceListResponse)
async def get_devices(
    online: Optional[bool] = Query(None, description="Only online (true) or offline (false) devices"),
    collector: EventCollector = Depends(get_collector)
):
    """Get monitored devices, online devices first"""

    now = datetime.now(timezone.utc)
    devices = list(collector.registry)
    if online is not None:
        devices = [device for device in devices if device.is_online == online]

    # Stable sort keeps registration order within each group
    devices.sort(key=lambda device: not device.is_online)

    return DeviceListResponse(
        devices=[DeviceResponse.from_state(device, now) for device in devices],
        total=len(devices),
        online=sum(1 for device in devices if device.is_online)
    )

@router.get("/devices/{device_id}", response_model=DeviceResponse)
async def get_device(device_id: str, collector: EventCollector = Depends(get_collector)):
    """Get a device with its closed sessions"""

    device = collector.registry.get(device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")

    return DeviceResponse.from_state(device, datetime.now(timezone.utc), include_sessions=True)

@router.delete("/devices/{device_id}")
async def delete_device(device_id: str, collector: EventCollector = Depends(get_collector)):
    """Delete a device, its sessions and its trailing events"""

    removed = await collector.delete_device(device_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Device not found")

    return {"message": "Device deleted successfully"}
