"""Runtime records emitted while a flow runs."""

from flowrun.runtime.events import RunEvent, RunEventType

__all__ = ["RunEvent", "RunEventType"]
