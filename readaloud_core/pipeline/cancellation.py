"""Cooperative cancellation, checked between stages."""

import threading


class CancellationToken:
    """
    Set by whoever wants the job stopped; read by the orchestrator at each
    stage boundary. An in-flight stage is never interrupted.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "Cancelled by user") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()
