from __future__ import annotations

import logging
from typing import Any

from .contracts import JobHandle, JobSpec
from .errors import KubectlError, SubmissionError
from .kubectl import KubectlClient

logger = logging.getLogger(__name__)


def submit_job(client: KubectlClient, spec: JobSpec) -> tuple[JobHandle, dict[str, Any]]:
    try:
        record = client.create_resource(spec.to_manifest(), namespace=spec.namespace)
    except KubectlError as exc:
        raise SubmissionError(spec.name, exc) from exc
    metadata = record.get("metadata") if isinstance(record.get("metadata"), dict) else {}
    handle = JobHandle(
        name=str(metadata.get("name") or spec.name),
        namespace=str(metadata.get("namespace") or spec.namespace),
        uid=str(metadata.get("uid") or ""),
    )
    logger.info("Created job %s (uid=%s)", handle, handle.uid or "unknown")
    return handle, record
