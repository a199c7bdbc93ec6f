"""Unit tests for per-tenant dialplan rendering."""

from __future__ import annotations

from pathlib import Path

from tenantpbx.provisioning.dialplan import (
    DialplanSpec,
    artifact_path,
    inbound_context,
    outbound_context,
    render_dialplan,
)

_AGI_URL = "agi://localhost:4573/authorize"


def _acme() -> DialplanSpec:
    return DialplanSpec(
        tenant_id="acme", inbound_number="5551000", trunk_name="acme-trunk", agi_url=_AGI_URL
    )


class TestRenderDialplan:
    def test_deterministic(self) -> None:
        assert render_dialplan(_acme()) == render_dialplan(_acme())

    def test_contexts(self) -> None:
        text = render_dialplan(_acme())
        assert "[inbound-acme]" in text
        assert "[outbound-acme]" in text

    def test_inbound_routes_did(self) -> None:
        text = render_dialplan(_acme())
        assert "exten => 5551000,1,NoOp(Inbound call for acme)" in text
        assert " same => n,Answer()" in text
        assert " same => n,Playback(welcome)" in text

    def test_outbound_calls_agi_with_caller_and_destination(self) -> None:
        text = render_dialplan(_acme())
        assert "exten => _X.,1," in text
        assert f"AGI({_AGI_URL},${{CALLERID(num)}},${{EXTEN}})" in text

    def test_tags_cdr_and_recording(self) -> None:
        text = render_dialplan(_acme())
        assert "Set(CDR(tenant)=acme)" in text
        assert "Set(recording=acme/${CALLERID(num)}_${EXTEN}_${EPOCH}.wav)" in text
        assert text.count("MixMonitor(${recording},ab)") == 2

    def test_routing_on_published_variables(self) -> None:
        text = render_dialplan(_acme())
        assert 'GotoIf($["${IS_ALLOWED}" != "true"]?deny)' in text
        assert 'GotoIf($["${TARGET_TYPE}" = "INTERNAL"]?dial_internal)' in text
        assert 'GotoIf($["${TARGET_TYPE}" = "EXTERNAL"]?dial_external)' in text

    def test_deny_check_precedes_dials(self) -> None:
        text = render_dialplan(_acme())
        assert text.index("?deny)") < text.index("Dial(")

    def test_dial_targets(self) -> None:
        text = render_dialplan(_acme())
        assert "Dial(PJSIP/${EXTEN},30)" in text
        assert "Dial(PJSIP/${EXTEN}@acme-trunk,60)" in text

    def test_deny_branch(self) -> None:
        text = render_dialplan(_acme())
        deny = text[text.index("n(deny)") :]
        assert "Playback(ss-noservice)" in deny
        assert "Hangup()" in deny

    def test_other_tenant_shares_nothing(self) -> None:
        other = DialplanSpec(
            tenant_id="other", inbound_number="5552000", trunk_name="other-trunk", agi_url=_AGI_URL
        )
        text = render_dialplan(other)
        assert "acme" not in text
        assert "[outbound-other]" in text

    def test_ends_with_newline(self) -> None:
        assert render_dialplan(_acme()).endswith("Hangup()\n")


class TestNaming:
    def test_contexts(self) -> None:
        assert inbound_context("acme") == "inbound-acme"
        assert outbound_context("acme") == "outbound-acme"

    def test_artifact_path(self) -> None:
        assert artifact_path("/etc/asterisk/tenants", "acme") == Path(
            "/etc/asterisk/tenants/extensions_acme.conf"
        )


class TestGoldenFile:
    def test_matches_golden_copy(self) -> None:
        golden = Path(__file__).parent / "golden" / "extensions_acme.conf"
        assert render_dialplan(_acme()) == golden.read_text(encoding="utf-8")
