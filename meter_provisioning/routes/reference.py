"""Reference data documents served to browser clients."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from meter_provisioning.config import AppSettings
from meter_provisioning.dependencies import get_app_settings
from meter_provisioning.reference_data import (
    ReferenceDataError,
    load_approved_ouis,
    load_provisioning_defaults,
)

router = APIRouter(prefix="/config", tags=["reference"])
SettingsDep = Annotated[AppSettings, Depends(get_app_settings)]


@router.get("/approved-ouis.json", name="approved_ouis")
async def approved_ouis(settings: SettingsDep) -> dict[str, Any]:
    try:
        approved = load_approved_ouis(settings.approved_ouis_path)
    except ReferenceDataError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"approved_ouis": sorted(approved)}


@router.get("/provision-defaults.json", name="provision_defaults")
async def provision_defaults(settings: SettingsDep) -> dict[str, Any]:
    try:
        defaults = load_provisioning_defaults(settings.provision_defaults_path)
    except ReferenceDataError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return defaults.to_dict()
