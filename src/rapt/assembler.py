from __future__ import annotations

from datetime import datetime
from typing import Mapping, Sequence

from .contracts import (
    DEFAULT_JOB_TTL_SECONDS,
    EnvVar,
    JobSpec,
    MountBinding,
    ToolDefinition,
)

_JOB_NAME_MAX_LENGTH = 63
_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def _sanitize_k8s_name(value: str, *, max_length: int = _JOB_NAME_MAX_LENGTH) -> str:
    lowered = str(value or "").strip().lower()
    safe = "".join(ch if ch.isalnum() or ch == "-" else "-" for ch in lowered)
    safe = safe.strip("-")
    if len(safe) > max_length:
        safe = safe[:max_length].rstrip("-")
    return safe or "rapt-job"


def derive_job_name(tool_name: str, submitted_at: datetime) -> str:
    suffix = submitted_at.strftime(_TIMESTAMP_FORMAT)
    prefix = _sanitize_k8s_name(
        tool_name,
        max_length=_JOB_NAME_MAX_LENGTH - len(suffix) - 1,
    )
    return f"{prefix}-{suffix}"


def merge_env(
    base: Sequence[EnvVar],
    overrides: Mapping[str, str],
) -> tuple[EnvVar, ...]:
    merged: dict[str, str] = {}
    for item in base:
        merged[item.name] = item.value
    for name, value in overrides.items():
        merged[str(name)] = str(value)
    return tuple(EnvVar(name=name, value=value) for name, value in merged.items())


def assemble_job(
    tool: ToolDefinition,
    arguments: Sequence[str],
    env_overrides: Mapping[str, str],
    bindings: Sequence[MountBinding],
    *,
    job_name: str,
    namespace: str,
    ttl_seconds: int = DEFAULT_JOB_TTL_SECONDS,
) -> JobSpec:
    ordered = sorted(bindings, key=lambda binding: binding.index)
    if [binding.index for binding in ordered] != list(range(len(ordered))):
        raise ValueError("mount bindings must be index-aligned from 0")
    return JobSpec(
        name=job_name,
        namespace=namespace,
        tool_name=tool.name,
        image=tool.image,
        command=tuple(tool.command),
        args=tuple(arguments),
        env=merge_env(tool.env, env_overrides),
        mounts=tuple(ordered),
        ttl_seconds=int(ttl_seconds),
    )
