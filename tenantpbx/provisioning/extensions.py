"""Extension (PJSIP endpoint) provisioning.

Asterisk reads ps_auths / ps_aors / ps_endpoints through realtime, so a new
extension only needs its three rows committed together; no dialplan file
and no reload are involved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tenantpbx.errors import DuplicateExtension, StorageError, TenantNotFound, ValidationError
from tenantpbx.monitoring.metrics import extensions_provisioned_total
from tenantpbx.provisioning.dialplan import outbound_context
from tenantpbx.provisioning.tenants import require_fields
from tenantpbx.telephony.directory import TenantDirectory

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

# Endpoint defaults for every tenant phone
_TRANSPORT = "transport-udp"
_CODECS = "alaw,ulaw"
_MAX_CONTACTS = 1


@dataclass(frozen=True, slots=True)
class ExtensionProvisioned:
    extension: str
    tenant_id: str
    context: str


class ExtensionProvisioner:
    """Adds SIP endpoints (credential, AOR, endpoint) to existing tenants."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def create_extension(
        self, tenant_id: str | None, username: str | None, password: str | None
    ) -> ExtensionProvisioned:
        try:
            fields = require_fields(
                {"tenant_id": tenant_id, "username": username, "password": password},
                verbatim=("password",),
            )
        except ValidationError:
            extensions_provisioned_total.labels(outcome="invalid").inc()
            raise

        tenant_id = fields["tenant_id"]
        endpoint_id = fields["username"]
        context = outbound_context(tenant_id)

        try:
            async with self._engine.begin() as conn:
                if not await TenantDirectory(conn).tenant_exists(tenant_id):
                    raise TenantNotFound(tenant_id)

                try:
                    await conn.execute(
                        text("""
                            INSERT INTO ps_auths (id, auth_type, username, password)
                            VALUES (:id, 'userpass', :username, :password)
                        """),
                        {"id": endpoint_id, "username": endpoint_id, "password": fields["password"]},
                    )
                    await conn.execute(
                        text("""
                            INSERT INTO ps_aors (id, max_contacts, remove_existing)
                            VALUES (:id, :max_contacts, 'yes')
                        """),
                        {"id": endpoint_id, "max_contacts": _MAX_CONTACTS},
                    )
                    await conn.execute(
                        text("""
                            INSERT INTO ps_endpoints
                                (id, transport, aors, auth, context, disallow, allow,
                                 direct_media, force_rport, rewrite_contact, ice_support,
                                 media_encryption, tenantid)
                            VALUES (:id, :transport, :id, :id, :context, 'all', :allow,
                                    'no', 'no', 'no', 'yes', 'no', :tenant_id)
                        """),
                        {
                            "id": endpoint_id,
                            "transport": _TRANSPORT,
                            "context": context,
                            "allow": _CODECS,
                            "tenant_id": tenant_id,
                        },
                    )
                except IntegrityError as exc:
                    raise DuplicateExtension(endpoint_id) from exc
        except TenantNotFound:
            extensions_provisioned_total.labels(outcome="not_found").inc()
            raise
        except DuplicateExtension:
            extensions_provisioned_total.labels(outcome="duplicate").inc()
            logger.info(
                "Extension %s already exists", endpoint_id, extra={"tenant_id": tenant_id}
            )
            raise
        except SQLAlchemyError as exc:
            extensions_provisioned_total.labels(outcome="error").inc()
            logger.exception(
                "Extension %s provisioning rolled back",
                endpoint_id,
                extra={"tenant_id": tenant_id},
            )
            raise StorageError(f"Could not create extension '{endpoint_id}': {exc}") from exc

        extensions_provisioned_total.labels(outcome="created").inc()
        logger.info(
            "Created extension %s in %s",
            endpoint_id,
            context,
            extra={"tenant_id": tenant_id, "extension": endpoint_id},
        )
        return ExtensionProvisioned(extension=endpoint_id, tenant_id=tenant_id, context=context)

    async def list_extensions(self, tenant_id: str) -> list[dict[str, Any]]:
        try:
            async with self._engine.connect() as conn:
                return await TenantDirectory(conn).list_extensions(tenant_id)
        except SQLAlchemyError as exc:
            logger.exception("Failed to list extensions", extra={"tenant_id": tenant_id})
            raise StorageError(f"Could not list extensions: {exc}") from exc
