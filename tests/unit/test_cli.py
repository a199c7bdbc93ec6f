"""Unit tests for the admin CLI."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from tenantpbx.cli.main import _mask_secret, _mask_url_password, app
from tenantpbx.config import (
    AGISettings,
    ARISettings,
    DatabaseSettings,
    DialplanSettings,
    Settings,
)
from tenantpbx.provisioning.reload import ReloadResult
from tests.unit.mocks.fake_store import FakeStore

runner = CliRunner()


def _settings(config_dir: Path) -> Settings:
    return Settings(
        database=DatabaseSettings(url="postgresql+asyncpg://asterisk:topsecret@db:5432/asterisk"),
        dialplan=DialplanSettings(config_dir=str(config_dir)),
        agi=AGISettings(url="agi://10.0.0.5:4573/authorize"),
        ari=ARISettings(password="ari-password"),
    )


class TestVersion:
    def test_shows_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "tenantpbx v" in result.output


class TestConfigCheck:
    def test_valid_config_passes(self, tmp_path: Path) -> None:
        with patch("tenantpbx.cli.main.get_settings", return_value=_settings(tmp_path)):
            result = runner.invoke(app, ["config", "check"])
        assert result.exit_code == 0
        assert "passed" in result.output.lower()

    def test_invalid_config_fails(self, tmp_path: Path) -> None:
        with patch("tenantpbx.cli.main.get_settings", return_value=_settings(tmp_path / "nope")):
            result = runner.invoke(app, ["config", "check"])
        assert result.exit_code == 1
        assert "DIALPLAN_CONFIG_DIR" in result.output


class TestConfigShow:
    def test_secrets_masked(self, tmp_path: Path) -> None:
        with patch("tenantpbx.cli.main.get_settings", return_value=_settings(tmp_path)):
            result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "topsecret" not in result.output
        assert "ari-password" not in result.output
        assert "asterisk:***@db:5432" in result.output
        assert "[reload]" in result.output


class TestMasking:
    def test_mask_secret(self) -> None:
        assert _mask_secret("abcdef") == "ab***"
        assert _mask_secret("ab") == "***"

    def test_mask_url_password(self) -> None:
        assert _mask_url_password("postgresql://u:pw@h/db") == "postgresql://u:***@h/db"
        assert _mask_url_password("http://localhost:8088/ari") == "http://localhost:8088/ari"
        assert _mask_url_password("postgresql://u@h/db") == "postgresql://u@h/db"


class TestDialplanRender:
    def test_prints_dialplan(self, tmp_path: Path) -> None:
        with patch("tenantpbx.cli.provisioning.get_settings", return_value=_settings(tmp_path)):
            result = runner.invoke(
                app, ["dialplan", "render", "acme", "--did", "5551000", "--trunk", "acme-trunk"]
            )
        assert result.exit_code == 0
        assert "[outbound-acme]" in result.output
        assert "AGI(agi://10.0.0.5:4573/authorize," in result.output
        assert list(tmp_path.iterdir()) == []


class TestProvisioningCommands:
    def test_tenant_create(self, tmp_path: Path, empty_store: FakeStore) -> None:
        with (
            patch("tenantpbx.cli.provisioning.get_settings", return_value=_settings(tmp_path)),
            patch("tenantpbx.cli.provisioning._create_engine", return_value=empty_store),
            patch(
                "tenantpbx.provisioning.reload.AsteriskCLIReload.reload",
                AsyncMock(return_value=ReloadResult(ok=True)),
            ),
        ):
            result = runner.invoke(
                app, ["tenants", "create", "acme", "--did", "5551000", "--trunk", "acme-trunk"]
            )

        assert result.exit_code == 0, result.output
        assert "Tenant 'acme' created" in result.output
        assert (tmp_path / "extensions_acme.conf").exists()

    def test_tenant_create_duplicate_exits_1(self, tmp_path: Path, fake_store: FakeStore) -> None:
        with (
            patch("tenantpbx.cli.provisioning.get_settings", return_value=_settings(tmp_path)),
            patch("tenantpbx.cli.provisioning._create_engine", return_value=fake_store),
        ):
            result = runner.invoke(
                app, ["tenants", "create", "acme", "--did", "5551000", "--trunk", "acme-trunk"]
            )
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_tenants_list(self, tmp_path: Path, fake_store: FakeStore) -> None:
        with (
            patch("tenantpbx.cli.provisioning.get_settings", return_value=_settings(tmp_path)),
            patch("tenantpbx.cli.provisioning._create_engine", return_value=fake_store),
        ):
            result = runner.invoke(app, ["tenants", "list"])
        assert result.exit_code == 0
        assert "acme" in result.output
        assert "other-trunk" in result.output

    def test_extension_create_with_password_option(self, fake_store: FakeStore) -> None:
        with patch("tenantpbx.cli.provisioning._create_engine", return_value=fake_store):
            result = runner.invoke(
                app, ["extensions", "create", "acme", "101", "--password", "s3cret"]
            )
        assert result.exit_code == 0, result.output
        assert "Extension 101 created in outbound-acme" in result.output
        assert fake_store.tables["ps_endpoints"]["101"]["tenantid"] == "acme"

    def test_extension_create_unknown_tenant(self, fake_store: FakeStore) -> None:
        with patch("tenantpbx.cli.provisioning._create_engine", return_value=fake_store):
            result = runner.invoke(
                app, ["extensions", "create", "ghost", "101", "--password", "s3cret"]
            )
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_extensions_list(self, fake_store: FakeStore) -> None:
        with patch("tenantpbx.cli.provisioning._create_engine", return_value=fake_store):
            result = runner.invoke(app, ["extensions", "list", "acme"])
        assert result.exit_code == 0
        assert "100" in result.output
        assert "300" not in result.output

