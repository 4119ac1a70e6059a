"""Notifier protocol — one delivery channel for lending alerts and activity logs."""
from typing import Protocol


class Notifier(Protocol):
    """A channel the dispatcher fans messages out to.

    ``send_alert`` is for events an operator must act on (at-risk loans,
    liquidations, reports); ``send_log`` is the quieter activity feed.
    Both return whether the message was delivered and must not raise on
    delivery failure.
    """

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
