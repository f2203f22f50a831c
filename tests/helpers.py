"""Test doubles shared across the suite."""

from __future__ import annotations

import asyncio

DIMENSIONS = 768


def make_vector(seed: float = 0.1) -> list[float]:
    return [seed] * DIMENSIONS


class FakeProvider:
    """Embedding provider that replays a script of vectors and exceptions.

    Once the script runs out every call returns ``make_vector()``.
    """

    name = "Fake"

    def __init__(self, script=None, delay: float = 0.0) -> None:
        self.script = list(script or [])
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.events: list[tuple[str, str]] = []

    async def embed(self, text: str, api_key: str) -> list[float]:
        self.calls.append((text, api_key))
        self.events.append(("start", text))
        if self.delay:
            await asyncio.sleep(self.delay)
        self.events.append(("end", text))
        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return make_vector()


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested durations."""

    def __init__(self) -> None:
        self.durations: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.durations.append(seconds)
        await asyncio.sleep(0)
