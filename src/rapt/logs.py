from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, BinaryIO

from .config import DEFAULT_POD_MAX_ATTEMPTS, DEFAULT_POD_POLL_INTERVAL_SECONDS
from .contracts import POD_PHASE_PENDING, JobHandle, parse_iso8601
from .errors import KubectlError, PodReadinessTimeout
from .kubectl import KubectlClient, KubectlStream

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def pod_phase(pod: dict[str, Any]) -> str:
    status = pod.get("status") if isinstance(pod.get("status"), dict) else {}
    return str(status.get("phase") or POD_PHASE_PENDING)


def select_job_pod(pods: list[dict[str, Any]]) -> dict[str, Any] | None:
    best: dict[str, Any] | None = None
    best_started = _EPOCH
    for pod in pods:
        metadata = pod.get("metadata") if isinstance(pod.get("metadata"), dict) else {}
        if not str(metadata.get("name") or "").strip():
            continue
        status = pod.get("status") if isinstance(pod.get("status"), dict) else {}
        started = (
            parse_iso8601(status.get("startTime"))
            or parse_iso8601(metadata.get("creationTimestamp"))
            or _EPOCH
        )
        if best is None or started >= best_started:
            best = pod
            best_started = started
    return best


def _pod_name(pod: dict[str, Any]) -> str:
    metadata = pod.get("metadata") if isinstance(pod.get("metadata"), dict) else {}
    return str(metadata.get("name") or "")


class LogStreamer:
    def __init__(
        self,
        client: KubectlClient,
        handle: JobHandle,
        sink: BinaryIO,
        *,
        poll_interval: float = DEFAULT_POD_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_POD_MAX_ATTEMPTS,
        tail: int | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self._client = client
        self.handle = handle
        self._sink = sink
        self.poll_interval = max(0.0, float(poll_interval))
        self.max_attempts = max(1, int(max_attempts))
        self.tail = tail
        self.cancel_event = cancel or threading.Event()
        self.pod_name: str | None = None
        self.error: Exception | None = None
        self.bytes_relayed = 0
        self._lock = threading.Lock()
        self._stream: KubectlStream | None = None
        self._thread: threading.Thread | None = None

    def wait_for_pod(self) -> str | None:
        for attempt in range(1, self.max_attempts + 1):
            if self.cancel_event.wait(self.poll_interval):
                return None
            try:
                pods = self._client.list_job_pods(
                    self.handle.name,
                    namespace=self.handle.namespace,
                )
            except KubectlError as exc:
                logger.debug(
                    "Pod lookup for job %s failed (attempt %s/%s): %s",
                    self.handle.name,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                continue
            pod = select_job_pod(pods)
            if pod is not None and pod_phase(pod) != POD_PHASE_PENDING:
                self.pod_name = _pod_name(pod)
                return self.pod_name
        self.error = PodReadinessTimeout(self.handle.name, self.max_attempts)
        logger.warning("%s", self.error)
        return None

    def relay(self, pod_name: str) -> None:
        stream = self._client.stream_logs(
            pod_name,
            namespace=self.handle.namespace,
            follow=True,
            tail=self.tail,
        )
        with self._lock:
            if self.cancel_event.is_set():
                stream.close()
                return
            self._stream = stream
        try:
            for chunk in stream.iter_chunks():
                if self.cancel_event.is_set():
                    break
                self._sink.write(chunk)
                self._sink.flush()
                self.bytes_relayed += len(chunk)
        finally:
            with self._lock:
                self._stream = None
            stream.close()

    def run(self) -> None:
        pod_name = self.wait_for_pod()
        if pod_name is None:
            return
        try:
            self.relay(pod_name)
        except KubectlError as exc:
            self.error = exc
            logger.warning("Log stream for pod %s ended with an error: %s", pod_name, exc)

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.run,
            name=f"rapt-logs-{self.handle.name}",
            daemon=True,
        )
        self._thread.start()

    def cancel(self) -> None:
        self.cancel_event.set()
        with self._lock:
            stream = self._stream
        if stream is not None:
            stream.close()

    def join(self, timeout: float | None = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
