"""Scriptable CrmClient for testing, no network involved."""

import asyncio

from cv_pipeline.services.crm_client import CrmCandidatePayload, CrmClient


class FakeCrmClient(CrmClient):
    """Replays scripted outcomes, one per push.

    An outcome is either an exception instance (raised) or a record id
    (returned). Once the script runs out every push succeeds.
    """

    def __init__(self) -> None:
        self._outcomes: list[BaseException | str | None] = []
        self.pushes: list[CrmCandidatePayload] = []
        self.in_flight = 0
        self.max_in_flight = 0
        # When set, pushes block until the event fires
        self.gate: asyncio.Event | None = None
        self.closed = False

    def script(self, *outcomes: BaseException | str | None) -> None:
        self._outcomes.extend(outcomes)

    async def push(self, payload: CrmCandidatePayload) -> str | None:
        self.pushes.append(payload)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            outcome = self._outcomes.pop(0) if self._outcomes else f"crm-{len(self.pushes)}"
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True
