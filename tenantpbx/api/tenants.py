"""Admin API for tenant and extension provisioning.

Thin HTTP layer over ProvisioningWorkflow / ExtensionProvisioner: request
bodies in, provisioning errors mapped to status codes out.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tenantpbx.config import get_settings
from tenantpbx.errors import (
    DuplicateExtension,
    DuplicateTenant,
    StorageError,
    TenantNotFound,
    ValidationError,
)
from tenantpbx.provisioning.extensions import ExtensionProvisioner
from tenantpbx.provisioning.reload import build_reload_trigger
from tenantpbx.provisioning.tenants import ProvisioningWorkflow

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/tenants", tags=["tenants"])

_engine: AsyncEngine | None = None


def set_engine(engine: AsyncEngine) -> None:
    """Share the process-wide engine (and its pool) with the API."""
    global _engine
    _engine = engine


async def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database.url,
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_pre_ping=True,
        )
    return _engine


async def _get_workflow() -> ProvisioningWorkflow:
    settings = get_settings()
    return ProvisioningWorkflow(
        engine=await _get_engine(),
        config_dir=settings.dialplan.config_dir,
        agi_url=settings.agi.url,
        reload_trigger=build_reload_trigger(settings),
    )


async def _get_provisioner() -> ExtensionProvisioner:
    return ExtensionProvisioner(await _get_engine())


# ─── Pydantic models ──────────────────────────────────────


class TenantCreate(BaseModel):
    name: str | None = None
    inbound_did: str | None = None
    outbound_trunk: str | None = None


class ExtensionCreate(BaseModel):
    username: str | None = None
    password: str | None = None


# ─── Endpoints ───────────────────────────────────────────


@router.post("", status_code=201)
async def create_tenant(request: TenantCreate) -> dict[str, Any]:
    """Create the tenant row, write its dialplan file and reload Asterisk."""
    workflow = await _get_workflow()
    try:
        result = await workflow.create_tenant(
            request.name, request.inbound_did, request.outbound_trunk
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DuplicateTenant as exc:
        raise HTTPException(status_code=409, detail="Tenant already exists") from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail="Internal Server Error") from exc

    response: dict[str, Any] = {
        "message": "Tenant created and Asterisk reloaded"
        if result.reloaded
        else "Tenant created; Asterisk reload failed, reload manually",
        "id": result.tenant_id,
        "context_file": str(result.file_path),
        "reloaded": result.reloaded,
    }
    if result.reload_warning:
        response["warning"] = result.reload_warning
    return response


@router.get("")
async def list_tenants() -> dict[str, Any]:
    """List all tenants."""
    workflow = await _get_workflow()
    try:
        tenants = await workflow.list_tenants()
    except StorageError as exc:
        raise HTTPException(status_code=500, detail="Database error") from exc
    return {"tenants": tenants, "total": len(tenants)}


@router.post("/{tenant_id}/extensions", status_code=201)
async def create_extension(tenant_id: str, request: ExtensionCreate) -> dict[str, Any]:
    """Create a SIP endpoint for the tenant (database only, picked up by realtime)."""
    provisioner = await _get_provisioner()
    try:
        result = await provisioner.create_extension(tenant_id, request.username, request.password)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TenantNotFound as exc:
        raise HTTPException(status_code=404, detail="Tenant does not exist") from exc
    except DuplicateExtension as exc:
        raise HTTPException(status_code=409, detail="Extension already exists") from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail="Internal Server Error") from exc

    return {"message": "Extension created", "extension": result.extension}


@router.get("/{tenant_id}/extensions")
async def list_extensions(tenant_id: str) -> dict[str, Any]:
    """List a tenant's extensions."""
    provisioner = await _get_provisioner()
    try:
        extensions = await provisioner.list_extensions(tenant_id)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail="Database error") from exc
    return {"extensions": extensions, "total": len(extensions)}
