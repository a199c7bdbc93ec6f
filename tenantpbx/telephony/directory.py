"""Read-only tenant/extension lookups against the realtime PJSIP tables.

A TenantDirectory is bound to one connection; callers open the connection
(``engine.connect()`` or ``engine.begin()``) for the duration of a single
logical operation and build a directory on top of it.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection


class TenantDirectory:
    """Which tenant owns which endpoint."""

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def tenant_of(self, extension: str) -> str | None:
        """Return the owning tenant id of an extension, or None if unknown."""
        result = await self._conn.execute(
            text("SELECT tenantid FROM ps_endpoints WHERE id = :id"),
            {"id": extension},
        )
        row = result.first()
        return row._mapping["tenantid"] if row else None

    async def tenant_exists(self, tenant_id: str) -> bool:
        result = await self._conn.execute(
            text("SELECT id FROM tenants WHERE id = :id"),
            {"id": tenant_id},
        )
        return result.first() is not None

    async def list_tenants(self) -> list[dict[str, Any]]:
        result = await self._conn.execute(
            text("""
                SELECT id, inbound_did, outbound_trunk, created_at
                FROM tenants
                ORDER BY id
            """)
        )
        return [dict(row._mapping) for row in result]

    async def list_extensions(self, tenant_id: str) -> list[dict[str, Any]]:
        result = await self._conn.execute(
            text("""
                SELECT id, context, allow, ice_support
                FROM ps_endpoints
                WHERE tenantid = :tenant_id
                ORDER BY id
            """),
            {"tenant_id": tenant_id},
        )
        return [dict(row._mapping) for row in result]
