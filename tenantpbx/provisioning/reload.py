"""Ways to make Asterisk re-read its dialplan.

Reload is best effort: triggers report failure as a ReloadResult instead
of raising, so a failed reload never undoes a committed tenant. An
operator can always run ``dialplan reload`` by hand.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Protocol

import aiohttp

from tenantpbx.config import Settings
from tenantpbx.monitoring.metrics import dialplan_reload_failures_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReloadResult:
    ok: bool
    detail: str = ""


class ReloadTrigger(Protocol):
    async def reload(self) -> ReloadResult: ...


class AsteriskCLIReload:
    """Runs ``asterisk -rx "dialplan reload"`` (or a configured equivalent)."""

    method = "cli"

    def __init__(self, command: str = 'asterisk -rx "dialplan reload"', timeout: float = 30.0) -> None:
        self._argv = shlex.split(command)
        self._timeout = timeout

    async def reload(self) -> ReloadResult:
        logger.info("Reloading Asterisk dialplan: %s", shlex.join(self._argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return self._failed(f"cannot run {self._argv[0]}: {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return self._failed(f"timed out after {self._timeout:.0f}s")

        out = stdout.decode(errors="replace").strip()
        err = stderr.decode(errors="replace").strip()
        if proc.returncode != 0:
            return self._failed(f"exit code {proc.returncode}: {err or out}")
        if err:
            logger.warning("Asterisk reload stderr: %s", err)
        logger.info("Asterisk reload output: %s", out)
        return ReloadResult(ok=True, detail=out)

    def _failed(self, detail: str) -> ReloadResult:
        logger.error("Dialplan reload failed: %s", detail)
        dialplan_reload_failures_total.labels(method=self.method).inc()
        return ReloadResult(ok=False, detail=detail)


class ARIModuleReload:
    """Reloads pbx_config through ARI (PUT /asterisk/modules/pbx_config.so)."""

    method = "ari"
    module = "pbx_config.so"

    def __init__(self, url: str, user: str, password: str, timeout: float = 30.0) -> None:
        self._url = url.rstrip("/")
        self._auth = aiohttp.BasicAuth(user, password)
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def reload(self) -> ReloadResult:
        endpoint = f"{self._url}/asterisk/modules/{self.module}"
        logger.info("Reloading %s via ARI", self.module)
        try:
            async with aiohttp.ClientSession(auth=self._auth, timeout=self._timeout) as session:
                async with session.put(endpoint) as resp:
                    if resp.status in (200, 204):
                        return ReloadResult(ok=True, detail=f"status={resp.status}")
                    body = await resp.text()
                    return self._failed(f"status={resp.status}: {body.strip()}")
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            return self._failed(f"ARI unavailable: {exc}")

    def _failed(self, detail: str) -> ReloadResult:
        logger.error("Dialplan reload failed: %s", detail)
        dialplan_reload_failures_total.labels(method=self.method).inc()
        return ReloadResult(ok=False, detail=detail)


def build_reload_trigger(settings: Settings) -> ReloadTrigger:
    """Create the reload trigger selected by RELOAD_METHOD."""
    if settings.reload.method == "ari":
        return ARIModuleReload(
            url=settings.ari.url,
            user=settings.ari.user,
            password=settings.ari.password,
            timeout=settings.reload.timeout,
        )
    return AsteriskCLIReload(command=settings.reload.command, timeout=settings.reload.timeout)
