"""Per-call AGI session state machine.

Drives one FastAGI session from Asterisk end to end:
  AwaitingVariables → Deciding → Publishing → Terminated
  AwaitingVariables → Publishing (missing arguments: forced deny)

The handler only talks to the AGISession capability, so the concrete
protocol library stays swappable and tests can drive it with a fake.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING, Protocol

from tenantpbx.monitoring.metrics import authorization_decisions_total
from tenantpbx.telephony.authorization import AuthorizationDecision, Classification

if TYPE_CHECKING:
    from collections.abc import Callable

    from tenantpbx.telephony.authorization import CallAuthorizationService

logger = logging.getLogger(__name__)

# Channel variables exchanged with the dialplan
CALLER_ARG = "agi_arg_1"
DESTINATION_ARG = "agi_arg_2"
ALLOW_VARIABLE = "IS_ALLOWED"
TYPE_VARIABLE = "TARGET_TYPE"


class AGISession(Protocol):
    """What the handler needs from a call-control session."""

    async def wait_variables(self) -> dict[str, str]: ...

    def get_variable(self, name: str) -> str | None: ...

    async def set_variable(self, name: str, value: str) -> None: ...

    async def end(self) -> None: ...

    def on_error(self, callback: Callable[[BaseException], None]) -> None: ...


class SessionState(str, enum.Enum):
    """States of an AGI authorization session."""

    AWAITING_VARIABLES = "awaiting_variables"
    DECIDING = "deciding"
    PUBLISHING = "publishing"
    TERMINATED = "terminated"


_VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.AWAITING_VARIABLES: {
        SessionState.DECIDING,
        SessionState.PUBLISHING,
        SessionState.TERMINATED,
    },
    SessionState.DECIDING: {SessionState.PUBLISHING, SessionState.TERMINATED},
    SessionState.PUBLISHING: {SessionState.TERMINATED},
    SessionState.TERMINATED: set(),
}


class CallSessionHandler:
    """Authorizes one call attempt and publishes the decision to the channel."""

    def __init__(
        self,
        session: AGISession,
        authorizer: CallAuthorizationService,
        variables_timeout: float | None = None,
        session_id: str = "",
    ) -> None:
        self._session = session
        self._authorizer = authorizer
        self._variables_timeout = variables_timeout or None
        self.session_id = session_id
        self.state = SessionState.AWAITING_VARIABLES
        self.decision: AuthorizationDecision | None = None

    # --- State transitions ---

    def transition_to(self, new_state: SessionState) -> bool:
        """Transition to a new state with validation. Returns False if rejected."""
        valid = _VALID_TRANSITIONS.get(self.state, set())
        if new_state not in valid:
            logger.warning(
                "Invalid session transition %s → %s",
                self.state.value,
                new_state.value,
                extra={"session_id": self.session_id},
            )
            return False
        logger.debug(
            "Session %s: %s → %s", self.session_id, self.state.value, new_state.value
        )
        self.state = new_state
        return True

    # --- Lifecycle ---

    async def run(self) -> AuthorizationDecision:
        """Run the session to completion. Always ends the session."""
        self._session.on_error(self._log_protocol_error)
        try:
            variables = await self._await_variables()
            self.session_id = self.session_id or variables.get("agi_uniqueid", "")
            from_extension = (variables.get(CALLER_ARG) or "").strip()
            to_destination = (variables.get(DESTINATION_ARG) or "").strip()

            if not from_extension or not to_destination:
                logger.warning(
                    "Missing AGI arguments (from=%r, to=%r), denying",
                    from_extension,
                    to_destination,
                    extra={"session_id": self.session_id},
                )
                self.decision = AuthorizationDecision.deny()
                authorization_decisions_total.labels(classification="NONE").inc()
            else:
                self.transition_to(SessionState.DECIDING)
                logger.info(
                    "Authorizing %s -> %s",
                    from_extension,
                    to_destination,
                    extra={"session_id": self.session_id},
                )
                self.decision = await self._decide(from_extension, to_destination)

            self.transition_to(SessionState.PUBLISHING)
            await self._publish(self.decision)
        finally:
            await self._terminate()

        return self.decision

    async def _await_variables(self) -> dict[str, str]:
        try:
            return await asyncio.wait_for(
                self._session.wait_variables(), timeout=self._variables_timeout
            )
        except TimeoutError:
            logger.warning(
                "No AGI variables after %.1fs",
                self._variables_timeout,
                extra={"session_id": self.session_id},
            )
            return {}
        except (asyncio.IncompleteReadError, OSError, ValueError) as exc:
            # Already reported through the error listener
            logger.warning(
                "AGI variables unreadable: %s",
                exc,
                extra={"session_id": self.session_id},
            )
            return {}

    async def _decide(self, from_extension: str, to_destination: str) -> AuthorizationDecision:
        try:
            return await self._authorizer.authorize(from_extension, to_destination)
        except Exception:
            logger.exception(
                "Authorization failed unexpectedly, denying",
                extra={"session_id": self.session_id},
            )
            return AuthorizationDecision.deny(Classification.ERROR)

    async def _publish(self, decision: AuthorizationDecision) -> None:
        classification = decision.classification.value if decision.classification else ""
        logger.info(
            "Result: %s (allowed=%s)",
            classification or "-",
            decision.allowed,
            extra={"session_id": self.session_id, "classification": classification},
        )
        values = (
            (ALLOW_VARIABLE, "true" if decision.allowed else "false"),
            (TYPE_VARIABLE, classification),
        )
        for name, value in values:
            try:
                await self._session.set_variable(name, value)
            except Exception:
                logger.exception(
                    "Failed to set %s=%s", name, value, extra={"session_id": self.session_id}
                )

    async def _terminate(self) -> None:
        if not self.transition_to(SessionState.TERMINATED):
            return
        try:
            await self._session.end()
        except Exception:
            logger.exception("Failed to end AGI session", extra={"session_id": self.session_id})

    def _log_protocol_error(self, exc: BaseException) -> None:
        logger.error(
            "AGI session error: %s", exc, extra={"session_id": self.session_id}
        )
