from __future__ import annotations

import base64
import logging
import posixpath
from pathlib import Path
from typing import Any, Sequence

from .contracts import (
    JOB_LABEL,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    MOUNT_CONTENT_KEY,
    JobHandle,
    MountBinding,
    MountSpec,
)
from .errors import InvalidMountSpec, KubectlError, MountReadError
from .kubectl import KubectlClient

logger = logging.getLogger(__name__)


def parse_mount(text: str) -> MountSpec:
    raw = str(text or "").strip()
    local_path, sep, container_path = raw.rpartition(":")
    if not sep or not local_path or not container_path:
        raise InvalidMountSpec(
            f"invalid mount format: {raw} (expected local:container)",
            details={"value": raw},
        )
    if not posixpath.isabs(container_path):
        raise InvalidMountSpec(
            f"invalid mount format: {raw} (container path must be absolute)",
            details={"value": raw},
        )
    return MountSpec(local_path=local_path, container_path=container_path)


def mount_config_map_name(job_name: str, index: int) -> str:
    return f"{job_name}-mount-{index}"


def build_config_map(
    *,
    name: str,
    namespace: str,
    job_name: str,
    content: bytes,
) -> dict[str, Any]:
    manifest: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {
                MANAGED_BY_LABEL: MANAGED_BY_VALUE,
                JOB_LABEL: job_name,
            },
        },
    }
    try:
        manifest["data"] = {MOUNT_CONTENT_KEY: content.decode("utf-8")}
    except UnicodeDecodeError:
        manifest["binaryData"] = {
            MOUNT_CONTENT_KEY: base64.b64encode(content).decode("ascii")
        }
    return manifest


class MountMaterializer:
    def __init__(
        self,
        client: KubectlClient,
        *,
        job_name: str,
        namespace: str,
    ) -> None:
        self._client = client
        self.job_name = job_name
        self.namespace = namespace
        self.bindings: list[MountBinding] = []

    def materialize(self, mounts: Sequence[MountSpec]) -> list[MountBinding]:
        for index, mount in enumerate(mounts):
            try:
                content = Path(mount.local_path).expanduser().read_bytes()
            except OSError as exc:
                raise MountReadError(index, mount.local_path, exc) from exc
            name = mount_config_map_name(self.job_name, index)
            self._client.create_resource(
                build_config_map(
                    name=name,
                    namespace=self.namespace,
                    job_name=self.job_name,
                    content=content,
                ),
                namespace=self.namespace,
            )
            logger.info(
                "Created ConfigMap %s for mount %s -> %s",
                name,
                mount.local_path,
                mount.container_path,
            )
            self.bindings.append(
                MountBinding(index=index, config_map=name, container_path=mount.container_path)
            )
        return list(self.bindings)

    def release(self) -> None:
        for binding in reversed(self.bindings):
            try:
                self._client.delete_resource(
                    "configmap",
                    binding.config_map,
                    namespace=self.namespace,
                    ignore_not_found=True,
                )
            except KubectlError as exc:
                logger.warning(
                    "Failed to delete ConfigMap %s after aborted run: %s",
                    binding.config_map,
                    exc,
                )
            else:
                logger.info("Deleted ConfigMap %s after aborted run", binding.config_map)
        self.bindings.clear()

    def adopt(self, handle: JobHandle) -> None:
        if not handle.uid:
            return
        owner = {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "name": handle.name,
            "uid": handle.uid,
            "blockOwnerDeletion": False,
        }
        for binding in self.bindings:
            try:
                self._client.patch_resource(
                    "configmap",
                    binding.config_map,
                    {"metadata": {"ownerReferences": [owner]}},
                    namespace=self.namespace,
                )
            except KubectlError as exc:
                logger.warning(
                    "Failed to attach ConfigMap %s to job %s; it will not be "
                    "garbage-collected with the job: %s",
                    binding.config_map,
                    handle.name,
                    exc,
                )
