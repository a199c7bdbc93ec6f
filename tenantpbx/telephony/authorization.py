"""Call authorization: may this extension reach that destination?

Decision order (first match wins):
  1. Destination is a known extension:
       caller unknown          → UNKNOWN  (deny)
       same tenant as caller   → INTERNAL (allow)
       different tenant        → MISMATCH (deny)
  2. Destination is a valid international number → EXTERNAL (allow)
  3. Anything else                               → INVALID  (deny)

Store failures fail closed as ERROR; they are never raised to the session.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantpbx.monitoring.metrics import authorization_decisions_total, authorization_latency_ms
from tenantpbx.telephony.directory import TenantDirectory
from tenantpbx.telephony.phone import is_valid_external

logger = logging.getLogger(__name__)


class Classification(str, enum.Enum):
    """Category assigned to a call destination."""

    INTERNAL = "INTERNAL"
    EXTERNAL = "EXTERNAL"
    MISMATCH = "MISMATCH"
    INVALID = "INVALID"
    UNKNOWN = "UNKNOWN"
    ERROR = "ERROR"


@dataclass(frozen=True, slots=True)
class AuthorizationDecision:
    """Outcome of one call attempt.

    classification is None only when the session never got as far as
    asking (missing caller or destination).
    """

    allowed: bool
    classification: Classification | None

    @classmethod
    def allow(cls, classification: Classification) -> AuthorizationDecision:
        return cls(allowed=True, classification=classification)

    @classmethod
    def deny(cls, classification: Classification | None = None) -> AuthorizationDecision:
        return cls(allowed=False, classification=classification)


class CallAuthorizationService:
    """Classifies call attempts using the tenant directory."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def authorize(self, from_extension: str, to_destination: str) -> AuthorizationDecision:
        started = time.monotonic()
        try:
            decision = await self._decide(from_extension, to_destination)
        except (SQLAlchemyError, OSError):
            logger.exception(
                "Directory lookup failed for %s -> %s, denying", from_extension, to_destination
            )
            decision = AuthorizationDecision.deny(Classification.ERROR)

        elapsed_ms = (time.monotonic() - started) * 1000
        authorization_latency_ms.observe(elapsed_ms)
        label = decision.classification.value if decision.classification else "NONE"
        authorization_decisions_total.labels(classification=label).inc()
        logger.debug(
            "Classified %s -> %s as %s",
            from_extension,
            to_destination,
            label,
            extra={"classification": label, "duration_ms": round(elapsed_ms, 1)},
        )
        return decision

    async def _decide(self, from_extension: str, to_destination: str) -> AuthorizationDecision:
        async with self._engine.connect() as conn:
            directory = TenantDirectory(conn)

            to_tenant = await directory.tenant_of(to_destination)
            if to_tenant is not None:
                from_tenant = await directory.tenant_of(from_extension)
                if from_tenant is None:
                    return AuthorizationDecision.deny(Classification.UNKNOWN)
                if from_tenant == to_tenant:
                    return AuthorizationDecision.allow(Classification.INTERNAL)
                return AuthorizationDecision.deny(Classification.MISMATCH)

        if is_valid_external(to_destination):
            return AuthorizationDecision.allow(Classification.EXTERNAL)
        return AuthorizationDecision.deny(Classification.INVALID)
