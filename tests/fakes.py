from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Any, Iterable, Iterator

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from rapt.config import RaptConfig
from rapt.errors import ResourceExists, ResourceNotFound


def tool_resource(
    name: str,
    *,
    image: str = "busybox",
    command: list[str] | None = None,
    arguments: list[dict[str, Any]] | None = None,
    env: list[dict[str, str]] | None = None,
    namespace: str = "default",
) -> dict[str, Any]:
    job_template: dict[str, Any] = {"image": image}
    if command is not None:
        job_template["command"] = command
    if env is not None:
        job_template["env"] = env
    spec: dict[str, Any] = {"jobTemplate": job_template}
    if arguments is not None:
        spec["arguments"] = arguments
    return {
        "apiVersion": "rapt.dev/v1alpha1",
        "kind": "Tool",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "creationTimestamp": "2024-05-01T10:00:00Z",
        },
        "spec": spec,
    }


def job_event(
    name: str,
    *,
    active: int = 0,
    succeeded: int = 0,
    failed: int = 0,
    event_type: str = "MODIFIED",
) -> dict[str, Any]:
    status: dict[str, int] = {}
    if active:
        status["active"] = active
    if succeeded:
        status["succeeded"] = succeeded
    if failed:
        status["failed"] = failed
    return {
        "type": event_type,
        "object": {"kind": "Job", "metadata": {"name": name}, "status": status},
    }


def pod(name: str, phase: str, *, start_time: str = "2024-05-01T10:00:05Z") -> dict[str, Any]:
    return {
        "metadata": {"name": name, "creationTimestamp": start_time},
        "status": {"phase": phase, "startTime": start_time},
    }


class FakeStream:
    def __init__(
        self,
        *,
        events: Iterable[dict[str, Any]] = (),
        chunks: Iterable[bytes] = (),
        block: bool = False,
    ) -> None:
        self._events = list(events)
        self._chunks = list(chunks)
        self._block = block
        self._closed = threading.Event()

    def __enter__(self) -> FakeStream:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def events(self) -> Iterator[dict[str, Any]]:
        for event in self._events:
            if self.closed:
                return
            yield event
        if self._block:
            self._closed.wait()

    def iter_chunks(self) -> Iterator[bytes]:
        for chunk in self._chunks:
            if self.closed:
                return
            yield chunk
        if self._block:
            self._closed.wait()

    def close(self) -> None:
        self._closed.set()


class FakeClient:
    def __init__(self, config: RaptConfig | None = None) -> None:
        self.config = config or RaptConfig(pod_poll_interval=0.01, log_drain_seconds=1.0)
        self.tools: dict[str, dict[str, Any]] = {}
        self.resources: dict[tuple[str, str], dict[str, Any]] = {}
        self.created: list[dict[str, Any]] = []
        self.deleted: list[tuple[str, str]] = []
        self.patched: list[tuple[str, str, dict[str, Any]]] = []
        self.create_failures: dict[str, BaseException] = {}
        self.pod_responses: list[list[dict[str, Any]]] = []
        self.job_events: list[dict[str, Any]] = []
        self.watch_blocks = False
        self.log_chunks: list[bytes] = []
        self.log_blocks = False
        self.streams: list[FakeStream] = []
        self.job_uid = "uid-1234"

    @property
    def namespace(self) -> str:
        return self.config.namespace

    def get_tool(self, name: str, *, namespace: str | None = None) -> dict[str, Any]:
        if name not in self.tools:
            raise ResourceNotFound(f'tools.rapt.dev "{name}" not found')
        return self.tools[name]

    def list_tools(
        self,
        *,
        namespace: str | None = None,
        all_namespaces: bool = False,
    ) -> list[dict[str, Any]]:
        return list(self.tools.values())

    def get_resource(self, kind: str, name: str, *, namespace: str | None = None) -> dict[str, Any]:
        if (kind, name) not in self.resources:
            raise ResourceNotFound(f'{kind} "{name}" not found')
        return self.resources[(kind, name)]

    def list_resources(
        self,
        kind: str,
        *,
        namespace: str | None = None,
        selector: str | None = None,
        all_namespaces: bool = False,
    ) -> list[dict[str, Any]]:
        return [item for (item_kind, _), item in self.resources.items() if item_kind == kind]

    def create_resource(
        self,
        manifest: dict[str, Any],
        *,
        namespace: str | None = None,
    ) -> dict[str, Any]:
        kind = str(manifest.get("kind") or "")
        name = str(manifest["metadata"]["name"])
        failure = self.create_failures.get(kind) or self.create_failures.get(name)
        if failure is not None:
            raise failure
        if (kind, name) in self.resources:
            raise ResourceExists(f'{kind} "{name}" already exists')
        record = {
            **manifest,
            "metadata": {**manifest["metadata"], "uid": self.job_uid if kind == "Job" else ""},
        }
        self.resources[(kind, name)] = record
        self.created.append(manifest)
        return record

    def delete_resource(
        self,
        kind: str,
        name: str,
        *,
        namespace: str | None = None,
        ignore_not_found: bool = False,
    ) -> None:
        self.deleted.append((kind, name))

    def patch_resource(
        self,
        kind: str,
        name: str,
        patch: dict[str, Any],
        *,
        namespace: str | None = None,
    ) -> None:
        self.patched.append((kind, name, patch))

    def cluster_info(self) -> str:
        return "Kubernetes control plane is running"

    def list_job_pods(self, job_name: str, *, namespace: str | None = None) -> list[dict[str, Any]]:
        if len(self.pod_responses) > 1:
            return self.pod_responses.pop(0)
        return self.pod_responses[0] if self.pod_responses else []

    def watch_job(self, job_name: str, *, namespace: str | None = None) -> FakeStream:
        stream = FakeStream(events=self.job_events, block=self.watch_blocks)
        self.streams.append(stream)
        return stream

    def stream_logs(
        self,
        pod_name: str,
        *,
        namespace: str | None = None,
        follow: bool = True,
        tail: int | None = None,
    ) -> FakeStream:
        stream = FakeStream(chunks=self.log_chunks, block=self.log_blocks)
        self.streams.append(stream)
        return stream

    def created_kinds(self, kind: str) -> list[dict[str, Any]]:
        return [item for item in self.created if item.get("kind") == kind]
