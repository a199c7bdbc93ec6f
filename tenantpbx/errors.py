"""Provisioning error taxonomy.

Business-rule failures (validation, duplicate, not found) are raised as
distinct subclasses so the admin API and CLI can map each to its own
outcome. Store failures are wrapped in StorageError after rollback.
"""

from __future__ import annotations


class ProvisioningError(Exception):
    """Base class for tenant and extension provisioning failures."""


class ValidationError(ProvisioningError):
    """Missing or malformed input."""


class DuplicateTenant(ProvisioningError):
    """A tenant with this id already exists."""

    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant '{tenant_id}' already exists")


class DuplicateExtension(ProvisioningError):
    """An extension with this id already exists."""

    def __init__(self, extension: str) -> None:
        self.extension = extension
        super().__init__(f"Extension '{extension}' already exists")


class TenantNotFound(ProvisioningError):
    """The referenced tenant does not exist."""

    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant '{tenant_id}' does not exist")


class StorageError(ProvisioningError):
    """Database or filesystem failure; any partial database state was rolled back."""
