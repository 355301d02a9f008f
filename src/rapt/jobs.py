from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO

from .contracts import POD_PHASE_PENDING, TOOL_LABEL, parse_iso8601
from .errors import KubectlError, PodReadinessTimeout, RaptError, ResourceNotFound
from .kubectl import KubectlClient
from .logs import pod_phase, select_job_pod
from .watcher import job_state_from_status

logger = logging.getLogger(__name__)

LOGS_POD_MAX_ATTEMPTS = 60
LOGS_POD_POLL_INTERVAL_SECONDS = 1.0

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class JobRun:
    name: str
    status: str
    created: datetime | None = None
    completed: datetime | None = None

    @property
    def duration(self) -> str:
        if self.created is None or self.completed is None:
            return ""
        return format_duration(self.completed - self.created)

    @classmethod
    def from_resource(cls, raw: dict[str, Any]) -> JobRun:
        metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
        status = raw.get("status") if isinstance(raw.get("status"), dict) else {}
        return cls(
            name=str(metadata.get("name") or ""),
            status=job_state_from_status(status),
            created=parse_iso8601(metadata.get("creationTimestamp")),
            completed=parse_iso8601(status.get("completionTime")),
        )

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "status": self.status,
            "created": self.created.isoformat() if self.created else "",
        }
        if self.completed is not None:
            payload["completed"] = self.completed.isoformat()
            payload["duration"] = self.duration
        return payload


def format_duration(delta: timedelta) -> str:
    seconds = max(0, int(round(delta.total_seconds())))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def list_job_runs(client: KubectlClient, tool_name: str, *, namespace: str) -> list[JobRun]:
    raw_jobs = client.list_resources(
        "jobs",
        namespace=namespace,
        selector=f"{TOOL_LABEL}={tool_name}",
    )
    runs = [JobRun.from_resource(item) for item in raw_jobs]
    return sorted(
        runs,
        key=lambda run: run.created or _EPOCH,
        reverse=True,
    )


def get_job_run(client: KubectlClient, job_name: str, *, namespace: str) -> JobRun:
    try:
        raw = client.get_resource("job", job_name, namespace=namespace)
    except ResourceNotFound as exc:
        raise RaptError(
            f"job '{job_name}' not found in namespace '{namespace}'",
            code=exc.code,
            details={"job": job_name, "namespace": namespace},
        ) from exc
    return JobRun.from_resource(raw)


def wait_for_started_pod(
    client: KubectlClient,
    job_name: str,
    *,
    namespace: str,
    max_attempts: int = LOGS_POD_MAX_ATTEMPTS,
    poll_interval: float = LOGS_POD_POLL_INTERVAL_SECONDS,
    cancel: threading.Event | None = None,
) -> str:
    cancel = cancel or threading.Event()
    pod = select_job_pod(client.list_job_pods(job_name, namespace=namespace))
    if pod is None:
        raise RaptError(
            f"no pods found for job '{job_name}'",
            details={"job": job_name},
        )
    attempts = 0
    while pod_phase(pod) == POD_PHASE_PENDING:
        if attempts >= max_attempts:
            raise PodReadinessTimeout(job_name, max_attempts)
        if attempts == 0:
            logger.info("Pod for job %s is still pending; waiting", job_name)
        attempts += 1
        if cancel.wait(poll_interval):
            raise PodReadinessTimeout(job_name, attempts)
        try:
            pods = client.list_job_pods(job_name, namespace=namespace)
        except KubectlError as exc:
            logger.debug("Pod lookup for job %s failed: %s", job_name, exc)
            continue
        pod = select_job_pod(pods) or pod
    metadata = pod.get("metadata") if isinstance(pod.get("metadata"), dict) else {}
    return str(metadata.get("name") or "")


def copy_job_logs(
    client: KubectlClient,
    pod_name: str,
    sink: BinaryIO,
    *,
    namespace: str,
    follow: bool = False,
    tail: int | None = None,
) -> int:
    relayed = 0
    with client.stream_logs(pod_name, namespace=namespace, follow=follow, tail=tail) as stream:
        for chunk in stream.iter_chunks():
            sink.write(chunk)
            sink.flush()
            relayed += len(chunk)
    return relayed
