"""Per-tenant Asterisk dialplan generation.

render_dialplan() is a pure function of its DialplanSpec: no clock, no
environment, no database. The same spec always renders the same bytes,
so generated files can be compared against golden copies.

Two contexts are produced for tenant ``T``:

  [inbound-T]   DID → answer, greeting, hangup
  [outbound-T]  every dialed number → FastAGI authorization, then
                internal dial, trunk dial, or deny based on
                ${IS_ALLOWED} / ${TARGET_TYPE}
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tenantpbx.core.call_session import ALLOW_VARIABLE, TYPE_VARIABLE

ARTIFACT_PREFIX = "extensions_"
ARTIFACT_SUFFIX = ".conf"


@dataclass(frozen=True, slots=True)
class DialplanSpec:
    tenant_id: str
    inbound_number: str
    trunk_name: str
    agi_url: str


def inbound_context(tenant_id: str) -> str:
    return f"inbound-{tenant_id}"


def outbound_context(tenant_id: str) -> str:
    """Context new endpoints of the tenant are placed in."""
    return f"outbound-{tenant_id}"


def artifact_path(config_dir: str | Path, tenant_id: str) -> Path:
    """Location of the tenant's dialplan file inside the include directory."""
    return Path(config_dir) / f"{ARTIFACT_PREFIX}{tenant_id}{ARTIFACT_SUFFIX}"


def render_dialplan(spec: DialplanSpec) -> str:
    """Render the complete dialplan text for one tenant."""
    tenant = spec.tenant_id
    recording = f"{tenant}/${{CALLERID(num)}}_${{EXTEN}}_${{EPOCH}}.wav"

    lines = [
        f"; Generated by tenantpbx for tenant {tenant}. Manual edits are overwritten.",
        "",
        f"[{inbound_context(tenant)}]",
        f"exten => {spec.inbound_number},1,NoOp(Inbound call for {tenant})",
        " same => n,Answer()",
        " same => n,Playback(welcome)",
        " same => n,Hangup()",
        "",
        f"[{outbound_context(tenant)}]",
        f"exten => _X.,1,NoOp(Outbound call from {tenant})",
        f" same => n,Set(CDR(tenant)={tenant})",
        f" same => n,Set(recording={recording})",
        f" same => n,AGI({spec.agi_url},${{CALLERID(num)}},${{EXTEN}})",
        # Anything but an explicit "true" is a denial
        f' same => n,GotoIf($["${{{ALLOW_VARIABLE}}}" != "true"]?deny)',
        f' same => n,GotoIf($["${{{TYPE_VARIABLE}}}" = "INTERNAL"]?dial_internal)',
        f' same => n,GotoIf($["${{{TYPE_VARIABLE}}}" = "EXTERNAL"]?dial_external)',
        " same => n,Goto(deny)",
        "",
        " same => n(dial_internal),NoOp(Internal call)",
        *_recorded_dial("PJSIP/${EXTEN},30"),
        "",
        " same => n(dial_external),NoOp(External call)",
        *_recorded_dial(f"PJSIP/${{EXTEN}}@{spec.trunk_name},60"),
        "",
        " same => n(deny),NoOp(Call denied)",
        " same => n,Playback(ss-noservice)",
        " same => n,Hangup()",
    ]
    return "\n".join(lines) + "\n"


def _recorded_dial(target: str) -> list[str]:
    return [
        " same => n,Set(CDR(recording)=${recording})",
        " same => n,MixMonitor(${recording},ab)",
        f" same => n,Dial({target})",
        " same => n,Hangup()",
    ]
