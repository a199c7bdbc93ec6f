"""Tenant provisioning: database row, dialplan file, Asterisk reload.

Write order:
  1. BEGIN; INSERT tenant           (duplicate id → DuplicateTenant)
  2. render dialplan
  3. write extensions_<id>.conf      (failure → ROLLBACK, StorageError)
  4. COMMIT                          (only after the file is on disk)
  5. reload Asterisk                 (failure is logged, never fatal)

If the commit itself fails, the file written in step 3 is deleted again so
no artifact outlives an uncommitted tenant. The database connection is
released before the reload runs.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tenantpbx.errors import DuplicateTenant, StorageError, ValidationError
from tenantpbx.monitoring.metrics import tenants_provisioned_total
from tenantpbx.provisioning.dialplan import DialplanSpec, artifact_path, render_dialplan
from tenantpbx.telephony.directory import TenantDirectory

if TYPE_CHECKING:
    from collections.abc import Collection

    from sqlalchemy.ext.asyncio import AsyncEngine

    from tenantpbx.provisioning.reload import ReloadTrigger

logger = logging.getLogger(__name__)

# Tenant ids name a file and two dialplan contexts
_TENANT_ID_RE = re.compile(r"[a-z0-9][a-z0-9_-]{0,49}")
# DID is rendered as an extension (pattern), trunk as a PJSIP endpoint name
_INBOUND_NUMBER_RE = re.compile(r"\+?[0-9A-Za-z_.!\[\]-]{1,40}", re.ASCII)
_TRUNK_NAME_RE = re.compile(r"[A-Za-z0-9_.-]{1,80}", re.ASCII)


@dataclass(frozen=True, slots=True)
class TenantProvisioned:
    tenant_id: str
    file_path: Path
    reloaded: bool
    reload_warning: str | None = None


def require_fields(
    fields: dict[str, str | None], verbatim: Collection[str] = ()
) -> dict[str, str]:
    """Strip fields not named in verbatim; raise ValidationError naming the blank ones."""
    cleaned = {
        name: (value or "") if name in verbatim else (value or "").strip()
        for name, value in fields.items()
    }
    missing = [name for name, value in cleaned.items() if not value]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return cleaned


def _check_dialplan_fields(fields: dict[str, str]) -> None:
    """Reject values that would not render as a single dialplan token."""
    if not _TENANT_ID_RE.fullmatch(fields["id"]):
        raise ValidationError(
            f"Invalid tenant id {fields['id']!r}: use lowercase letters, digits, '-' or '_'"
        )
    if not _INBOUND_NUMBER_RE.fullmatch(fields["inbound_number"]):
        raise ValidationError(
            f"Invalid inbound number {fields['inbound_number']!r}: "
            "use up to 40 digits or extension pattern characters"
        )
    if not _TRUNK_NAME_RE.fullmatch(fields["trunk_name"]):
        raise ValidationError(
            f"Invalid trunk name {fields['trunk_name']!r}: "
            "use up to 80 letters, digits, '.', '-' or '_'"
        )


def _write_atomic(path: Path, content: str) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


class ProvisioningWorkflow:
    """Creates tenants and keeps their dialplan files in step with the database."""

    def __init__(
        self,
        engine: AsyncEngine,
        config_dir: str | Path,
        agi_url: str,
        reload_trigger: ReloadTrigger,
    ) -> None:
        self._engine = engine
        self._config_dir = Path(config_dir)
        self._agi_url = agi_url
        self._reload = reload_trigger

    async def create_tenant(
        self, tenant_id: str | None, inbound_number: str | None, trunk_name: str | None
    ) -> TenantProvisioned:
        try:
            fields = require_fields(
                {"id": tenant_id, "inbound_number": inbound_number, "trunk_name": trunk_name}
            )
            _check_dialplan_fields(fields)
        except ValidationError:
            tenants_provisioned_total.labels(outcome="invalid").inc()
            raise

        tenant_id = fields["id"]
        spec = DialplanSpec(
            tenant_id=tenant_id,
            inbound_number=fields["inbound_number"],
            trunk_name=fields["trunk_name"],
            agi_url=self._agi_url,
        )
        path = artifact_path(self._config_dir, tenant_id)
        written = False

        try:
            async with self._engine.begin() as conn:
                try:
                    await conn.execute(
                        text("""
                            INSERT INTO tenants (id, inbound_did, outbound_trunk)
                            VALUES (:id, :inbound_did, :outbound_trunk)
                        """),
                        {
                            "id": tenant_id,
                            "inbound_did": spec.inbound_number,
                            "outbound_trunk": spec.trunk_name,
                        },
                    )
                except IntegrityError as exc:
                    raise DuplicateTenant(tenant_id) from exc

                content = render_dialplan(spec)
                await asyncio.to_thread(_write_atomic, path, content)
                written = True
        except DuplicateTenant:
            tenants_provisioned_total.labels(outcome="duplicate").inc()
            logger.info("Tenant %s already exists", tenant_id, extra={"tenant_id": tenant_id})
            raise
        except (SQLAlchemyError, OSError) as exc:
            tenants_provisioned_total.labels(outcome="error").inc()
            if written:
                await self._discard_artifact(path, tenant_id)
            logger.exception(
                "Tenant %s provisioning rolled back", tenant_id, extra={"tenant_id": tenant_id}
            )
            raise StorageError(f"Could not provision tenant '{tenant_id}': {exc}") from exc

        tenants_provisioned_total.labels(outcome="created").inc()
        logger.info(
            "Created tenant %s, dialplan written to %s",
            tenant_id,
            path,
            extra={"tenant_id": tenant_id},
        )

        reloaded, warning = await self._trigger_reload(tenant_id)
        return TenantProvisioned(
            tenant_id=tenant_id, file_path=path, reloaded=reloaded, reload_warning=warning
        )

    async def list_tenants(self) -> list[dict[str, Any]]:
        try:
            async with self._engine.connect() as conn:
                return await TenantDirectory(conn).list_tenants()
        except SQLAlchemyError as exc:
            logger.exception("Failed to list tenants")
            raise StorageError(f"Could not list tenants: {exc}") from exc

    async def _trigger_reload(self, tenant_id: str) -> tuple[bool, str | None]:
        try:
            result = await self._reload.reload()
        except Exception as exc:
            logger.exception("Reload trigger raised", extra={"tenant_id": tenant_id})
            return False, f"Dialplan reload failed: {exc}"

        if result.ok:
            return True, None
        logger.warning(
            "Tenant %s is committed but Asterisk was not reloaded: %s",
            tenant_id,
            result.detail,
            extra={"tenant_id": tenant_id},
        )
        return False, f"Dialplan reload failed: {result.detail}"

    async def _discard_artifact(self, path: Path, tenant_id: str) -> None:
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError:
            logger.exception(
                "Orphaned dialplan file left at %s", path, extra={"tenant_id": tenant_id}
            )
