"""Unit tests for the tenant admin API (tenantpbx/api/tenants.py)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tenantpbx.api.tenants import router
from tenantpbx.provisioning.extensions import ExtensionProvisioner
from tenantpbx.provisioning.reload import ReloadResult
from tenantpbx.provisioning.tenants import ProvisioningWorkflow
from tests.unit.mocks.fake_store import FakeStore

# ── helpers ──────────────────────────────────────────────


def _workflow(store: FakeStore, config_dir: Path, reload_ok: bool = True) -> ProvisioningWorkflow:
    trigger = AsyncMock()
    trigger.reload.return_value = ReloadResult(
        ok=reload_ok, detail="" if reload_ok else "exit code 1: Unable to connect"
    )
    return ProvisioningWorkflow(
        engine=store,  # type: ignore[arg-type]
        config_dir=config_dir,
        agi_url="agi://localhost:4573/authorize",
        reload_trigger=trigger,
    )


# ── fixtures ─────────────────────────────────────────────


@pytest.fixture()
def client() -> TestClient:
    app = FastAPI()
    app.include_router(router)
    return TestClient(app)


# ── TestCreateTenant ─────────────────────────────────────


class TestCreateTenant:
    def test_created(self, client: TestClient, empty_store: FakeStore, tmp_path: Path) -> None:
        with patch(
            "tenantpbx.api.tenants._get_workflow",
            AsyncMock(return_value=_workflow(empty_store, tmp_path)),
        ):
            resp = client.post(
                "/admin/tenants",
                json={"name": "acme", "inbound_did": "5551000", "outbound_trunk": "acme-trunk"},
            )

        assert resp.status_code == 201
        body = resp.json()
        assert body["id"] == "acme"
        assert body["reloaded"] is True
        assert body["context_file"] == str(tmp_path / "extensions_acme.conf")
        assert "warning" not in body

    def test_reload_failure_still_created(
        self, client: TestClient, empty_store: FakeStore, tmp_path: Path
    ) -> None:
        with patch(
            "tenantpbx.api.tenants._get_workflow",
            AsyncMock(return_value=_workflow(empty_store, tmp_path, reload_ok=False)),
        ):
            resp = client.post(
                "/admin/tenants",
                json={"name": "acme", "inbound_did": "5551000", "outbound_trunk": "acme-trunk"},
            )

        assert resp.status_code == 201
        body = resp.json()
        assert body["reloaded"] is False
        assert "Unable to connect" in body["warning"]
        assert "acme" in empty_store.tables["tenants"]

    def test_missing_field(self, client: TestClient, empty_store: FakeStore, tmp_path: Path) -> None:
        with patch(
            "tenantpbx.api.tenants._get_workflow",
            AsyncMock(return_value=_workflow(empty_store, tmp_path)),
        ):
            resp = client.post("/admin/tenants", json={"name": "acme", "inbound_did": "5551000"})
        assert resp.status_code == 400
        assert "trunk_name" in resp.json()["detail"]

    def test_dialplan_breaking_trunk_rejected(
        self, client: TestClient, empty_store: FakeStore, tmp_path: Path
    ) -> None:
        with patch(
            "tenantpbx.api.tenants._get_workflow",
            AsyncMock(return_value=_workflow(empty_store, tmp_path)),
        ):
            resp = client.post(
                "/admin/tenants",
                json={"name": "acme", "inbound_did": "5551000", "trunk_name": "t,60)\nsame => n,System(id)"},
            )
        assert resp.status_code == 400
        assert "trunk name" in resp.json()["detail"]
        assert empty_store.tables["tenants"] == {}
        assert list(tmp_path.iterdir()) == []

    def test_duplicate(self, client: TestClient, fake_store: FakeStore, tmp_path: Path) -> None:
        with patch(
            "tenantpbx.api.tenants._get_workflow",
            AsyncMock(return_value=_workflow(fake_store, tmp_path)),
        ):
            resp = client.post(
                "/admin/tenants",
                json={"name": "acme", "inbound_did": "5551000", "outbound_trunk": "acme-trunk"},
            )
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Tenant already exists"

    def test_storage_failure(self, client: TestClient, empty_store: FakeStore, tmp_path: Path) -> None:
        with patch(
            "tenantpbx.api.tenants._get_workflow",
            AsyncMock(return_value=_workflow(empty_store, tmp_path / "missing")),
        ):
            resp = client.post(
                "/admin/tenants",
                json={"name": "acme", "inbound_did": "5551000", "outbound_trunk": "acme-trunk"},
            )
        assert resp.status_code == 500
        assert "acme" not in empty_store.tables["tenants"]


class TestListTenants:
    def test_lists(self, client: TestClient, fake_store: FakeStore, tmp_path: Path) -> None:
        with patch(
            "tenantpbx.api.tenants._get_workflow",
            AsyncMock(return_value=_workflow(fake_store, tmp_path)),
        ):
            resp = client.get("/admin/tenants")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert [t["id"] for t in body["tenants"]] == ["acme", "other"]

    def test_store_failure(self, client: TestClient, fake_store: FakeStore, tmp_path: Path) -> None:
        fake_store.fail_on.append("FROM tenants")
        with patch(
            "tenantpbx.api.tenants._get_workflow",
            AsyncMock(return_value=_workflow(fake_store, tmp_path)),
        ):
            resp = client.get("/admin/tenants")
        assert resp.status_code == 500


# ── TestExtensions ───────────────────────────────────────


class TestCreateExtension:
    def _post(self, client: TestClient, store: FakeStore, tenant_id: str, body: dict[str, str]):  # type: ignore[no-untyped-def]
        with patch(
            "tenantpbx.api.tenants._get_provisioner",
            AsyncMock(return_value=ExtensionProvisioner(store)),  # type: ignore[arg-type]
        ):
            return client.post(f"/admin/tenants/{tenant_id}/extensions", json=body)

    def test_created(self, client: TestClient, fake_store: FakeStore) -> None:
        resp = self._post(client, fake_store, "acme", {"username": "101", "password": "s3cret"})
        assert resp.status_code == 201
        assert resp.json() == {"message": "Extension created", "extension": "101"}

    def test_unknown_tenant(self, client: TestClient, fake_store: FakeStore) -> None:
        resp = self._post(client, fake_store, "ghost", {"username": "101", "password": "s3cret"})
        assert resp.status_code == 404

    def test_duplicate(self, client: TestClient, fake_store: FakeStore) -> None:
        resp = self._post(client, fake_store, "acme", {"username": "200", "password": "s3cret"})
        assert resp.status_code == 409

    def test_missing_password(self, client: TestClient, fake_store: FakeStore) -> None:
        resp = self._post(client, fake_store, "acme", {"username": "101"})
        assert resp.status_code == 400
        assert "password" in resp.json()["detail"]

    def test_storage_failure(self, client: TestClient, fake_store: FakeStore) -> None:
        fake_store.fail_on.append("INSERT INTO ps_auths")
        resp = self._post(client, fake_store, "acme", {"username": "101", "password": "s3cret"})
        assert resp.status_code == 500


class TestListExtensions:
    def test_lists(self, client: TestClient, fake_store: FakeStore) -> None:
        with patch(
            "tenantpbx.api.tenants._get_provisioner",
            AsyncMock(return_value=ExtensionProvisioner(fake_store)),  # type: ignore[arg-type]
        ):
            resp = client.get("/admin/tenants/other/extensions")
        assert resp.status_code == 200
        assert resp.json()["total"] == 1
        assert resp.json()["extensions"][0]["id"] == "300"
