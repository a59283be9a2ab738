# tests/helpers.py
"""Shared test doubles and helpers"""
import asyncio

from bulkdispatch.core.domain import RecipientSource, StartCommand


class RecordingSink:
    """EventSink that keeps every published event in order."""

    def __init__(self):
        self.events: list[tuple[str, object]] = []

    async def publish(self, event: str, data) -> None:
        self.events.append((event, data))

    def of(self, event: str) -> list:
        return [data for name, data in self.events if name == event]


async def no_sleep(delay: float) -> None:
    return None


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


def paste(numbers: str, message: str = "hello") -> StartCommand:
    return StartCommand(message=message, source=RecipientSource.PASTE, number_list=numbers)
