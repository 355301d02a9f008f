from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Iterable

from .contracts import (
    JOB_STATE_FAILED,
    JOB_STATE_PENDING,
    JOB_STATE_RUNNING,
    JOB_STATE_SUCCEEDED,
    TERMINAL_STATES,
)
from .errors import JobWatchTimeout, WatchInterrupted

logger = logging.getLogger(__name__)

_POLL_SLICE_SECONDS = 0.5
_EVENT = "event"
_ERROR = "error"
_END = "end"


def _counter(status: dict[str, Any], key: str) -> int:
    try:
        return int(status.get(key) or 0)
    except (TypeError, ValueError):
        return 0


def job_state_from_status(status: dict[str, Any] | None) -> str:
    status = status if isinstance(status, dict) else {}
    if _counter(status, "succeeded") > 0:
        return JOB_STATE_SUCCEEDED
    if _counter(status, "failed") > 0:
        return JOB_STATE_FAILED
    if _counter(status, "active") > 0:
        return JOB_STATE_RUNNING
    return JOB_STATE_PENDING


def _split_event(event: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    if "type" in event and isinstance(event.get("object"), dict):
        return str(event.get("type") or "").upper(), event["object"]
    return "MODIFIED", event


def _pump(events: Iterable[dict[str, Any]], sink: queue.Queue) -> None:
    try:
        for event in events:
            sink.put((_EVENT, event))
    except Exception as exc:
        sink.put((_ERROR, exc))
        return
    sink.put((_END, None))


class LifecycleWatcher:
    def __init__(
        self,
        job_name: str,
        *,
        on_state: Callable[[str], None] | None = None,
    ) -> None:
        self.job_name = job_name
        self.state = JOB_STATE_PENDING
        self._on_state = on_state
        self._reported: str | None = None

    def _apply(self, job: dict[str, Any]) -> str:
        self.state = job_state_from_status(job.get("status"))
        if self.state != self._reported:
            self._reported = self.state
            logger.debug("Job %s is %s", self.job_name, self.state)
            if self._on_state is not None:
                self._on_state(self.state)
        return self.state

    def _matches(self, job: dict[str, Any]) -> bool:
        metadata = job.get("metadata") if isinstance(job.get("metadata"), dict) else {}
        name = str(metadata.get("name") or "")
        return not name or name == self.job_name

    def wait(
        self,
        events: Iterable[dict[str, Any]],
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        inbox: queue.Queue = queue.Queue()
        reader = threading.Thread(
            target=_pump,
            args=(events, inbox),
            name=f"rapt-watch-{self.job_name}",
            daemon=True,
        )
        reader.start()

        deadline = None
        if timeout is not None and timeout > 0:
            deadline = time.monotonic() + float(timeout)

        while True:
            if cancel is not None and cancel.is_set():
                raise WatchInterrupted(self.job_name, "watch was cancelled")
            wait_for = _POLL_SLICE_SECONDS
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise JobWatchTimeout(self.job_name, float(timeout or 0))
                wait_for = min(wait_for, remaining)
            try:
                kind, payload = inbox.get(timeout=wait_for)
            except queue.Empty:
                continue

            if kind == _ERROR:
                raise WatchInterrupted(self.job_name, str(payload)) from payload
            if kind == _END:
                raise WatchInterrupted(self.job_name, "event stream closed")

            event_type, job = _split_event(payload)
            if event_type == "ERROR":
                message = str(job.get("message") or job.get("reason") or "watch error")
                raise WatchInterrupted(self.job_name, message)
            if event_type == "BOOKMARK" or not self._matches(job):
                continue
            state = self._apply(job)
            if state in TERMINAL_STATES:
                return state
            if event_type == "DELETED":
                raise WatchInterrupted(self.job_name, "job was deleted")
