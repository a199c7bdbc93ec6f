"""CLI commands for tenant and extension provisioning.

Usage:
    tenantpbx-admin tenants create <id> --did <number> --trunk <name>
    tenantpbx-admin tenants list
    tenantpbx-admin extensions create <tenant> <username> [--password ...]
    tenantpbx-admin extensions list <tenant>
    tenantpbx-admin dialplan render <id> --did <number> --trunk <name>
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import typer
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tenantpbx.config import get_settings
from tenantpbx.errors import ProvisioningError
from tenantpbx.provisioning.dialplan import DialplanSpec, render_dialplan
from tenantpbx.provisioning.extensions import ExtensionProvisioner
from tenantpbx.provisioning.reload import build_reload_trigger
from tenantpbx.provisioning.tenants import ProvisioningWorkflow

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

tenants_app = typer.Typer(help="Tenant provisioning")
extensions_app = typer.Typer(help="Extension provisioning")
dialplan_app = typer.Typer(help="Dialplan generation")


def _create_engine() -> AsyncEngine:
    settings = get_settings()
    return create_async_engine(settings.database.url, pool_size=1, max_overflow=0)


def _run(operation: Callable[[AsyncEngine], Coroutine[Any, Any, Any]]) -> Any:
    """Run one provisioning coroutine with a short-lived engine."""

    async def _wrapper() -> Any:
        engine = _create_engine()
        try:
            return await operation(engine)
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_wrapper())
    except ProvisioningError as e:
        typer.echo(typer.style(f"❌ {e}", fg=typer.colors.RED))
        raise typer.Exit(code=1) from None


def _workflow(engine: AsyncEngine) -> ProvisioningWorkflow:
    settings = get_settings()
    return ProvisioningWorkflow(
        engine=engine,
        config_dir=settings.dialplan.config_dir,
        agi_url=settings.agi.url,
        reload_trigger=build_reload_trigger(settings),
    )


@tenants_app.command("create")
def tenants_create(
    tenant_id: str = typer.Argument(..., help="Tenant slug, e.g. acme"),
    did: str = typer.Option(..., "--did", help="Inbound DID"),
    trunk: str = typer.Option(..., "--trunk", help="Outbound PJSIP trunk"),
) -> None:
    """Create a tenant, write its dialplan and reload Asterisk."""
    result = _run(lambda engine: _workflow(engine).create_tenant(tenant_id, did, trunk))

    typer.echo(
        typer.style(f"✅ Tenant '{result.tenant_id}' created", fg=typer.colors.GREEN)
    )
    typer.echo(f"  dialplan: {result.file_path}")
    if result.reload_warning:
        typer.echo(typer.style(f"⚠ {result.reload_warning}", fg=typer.colors.YELLOW))


@tenants_app.command("list")
def tenants_list() -> None:
    """List all tenants."""
    tenants = _run(lambda engine: _workflow(engine).list_tenants())

    if not tenants:
        typer.echo("No tenants.")
        return
    for tenant in tenants:
        typer.echo(f"  {tenant['id']:<20} DID={tenant['inbound_did']:<15} trunk={tenant['outbound_trunk']}")


@extensions_app.command("create")
def extensions_create(
    tenant_id: str = typer.Argument(..., help="Owning tenant"),
    username: str = typer.Argument(..., help="Extension number / SIP username"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
) -> None:
    """Create a SIP endpoint for a tenant."""
    result = _run(
        lambda engine: ExtensionProvisioner(engine).create_extension(tenant_id, username, password)
    )
    typer.echo(
        typer.style(
            f"✅ Extension {result.extension} created in {result.context}", fg=typer.colors.GREEN
        )
    )


@extensions_app.command("list")
def extensions_list(tenant_id: str = typer.Argument(..., help="Owning tenant")) -> None:
    """List a tenant's extensions."""
    extensions = _run(lambda engine: ExtensionProvisioner(engine).list_extensions(tenant_id))

    if not extensions:
        typer.echo(f"No extensions for tenant '{tenant_id}'.")
        return
    for ext in extensions:
        typer.echo(f"  {ext['id']:<10} context={ext['context']} codecs={ext['allow']}")


@dialplan_app.command("render")
def dialplan_render(
    tenant_id: str = typer.Argument(..., help="Tenant slug"),
    did: str = typer.Option(..., "--did", help="Inbound DID"),
    trunk: str = typer.Option(..., "--trunk", help="Outbound PJSIP trunk"),
) -> None:
    """Print the dialplan a tenant would get, without touching disk or database."""
    settings = get_settings()
    spec = DialplanSpec(
        tenant_id=tenant_id, inbound_number=did, trunk_name=trunk, agi_url=settings.agi.url
    )
    typer.echo(render_dialplan(spec), nl=False)
