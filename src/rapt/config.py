from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Mapping

from .contracts import DEFAULT_JOB_TTL_SECONDS
from .errors import ConfigError

DEFAULT_NAMESPACE = "default"
DEFAULT_KUBECTL = "kubectl"
DEFAULT_POD_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_POD_MAX_ATTEMPTS = 30
DEFAULT_WATCH_TIMEOUT_SECONDS = 300.0
DEFAULT_LOG_DRAIN_SECONDS = 10.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_LOG_LEVEL = "WARNING"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _as_int(
    value: Any,
    *,
    default: int,
    minimum: int,
    maximum: int,
) -> int:
    try:
        parsed = int(str(value if value is not None else "").strip())
    except ValueError:
        parsed = default
    return max(minimum, min(maximum, parsed))


def _as_float(
    value: Any,
    *,
    default: float,
    minimum: float,
    maximum: float,
) -> float:
    try:
        parsed = float(str(value if value is not None else "").strip())
    except ValueError:
        parsed = default
    return max(minimum, min(maximum, parsed))


@dataclass(frozen=True)
class RaptConfig:
    namespace: str = DEFAULT_NAMESPACE
    kubeconfig: str = ""
    context: str = ""
    kubectl: str = DEFAULT_KUBECTL
    pod_poll_interval: float = DEFAULT_POD_POLL_INTERVAL_SECONDS
    pod_max_attempts: int = DEFAULT_POD_MAX_ATTEMPTS
    watch_timeout: float = DEFAULT_WATCH_TIMEOUT_SECONDS
    job_ttl_seconds: int = DEFAULT_JOB_TTL_SECONDS
    log_drain_seconds: float = DEFAULT_LOG_DRAIN_SECONDS
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    log_level: str = DEFAULT_LOG_LEVEL

    def with_overrides(self, **overrides: Any) -> RaptConfig:
        cleaned = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **cleaned) if cleaned else self


def load_config(
    overrides: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> RaptConfig:
    env = os.environ if environ is None else environ

    namespace = str(env.get("RAPT_NAMESPACE") or DEFAULT_NAMESPACE).strip()
    log_level = str(env.get("RAPT_LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(
            f"RAPT_LOG_LEVEL must be one of {', '.join(sorted(_LOG_LEVELS))}, got '{log_level}'"
        )

    config = RaptConfig(
        namespace=namespace or DEFAULT_NAMESPACE,
        kubeconfig=str(env.get("RAPT_KUBECONFIG") or "").strip(),
        context=str(env.get("RAPT_CONTEXT") or "").strip(),
        kubectl=str(env.get("RAPT_KUBECTL") or DEFAULT_KUBECTL).strip() or DEFAULT_KUBECTL,
        pod_poll_interval=_as_float(
            env.get("RAPT_POD_POLL_INTERVAL_SECONDS"),
            default=DEFAULT_POD_POLL_INTERVAL_SECONDS,
            minimum=0.1,
            maximum=60.0,
        ),
        pod_max_attempts=_as_int(
            env.get("RAPT_POD_MAX_ATTEMPTS"),
            default=DEFAULT_POD_MAX_ATTEMPTS,
            minimum=1,
            maximum=3600,
        ),
        watch_timeout=_as_float(
            env.get("RAPT_WATCH_TIMEOUT_SECONDS"),
            default=DEFAULT_WATCH_TIMEOUT_SECONDS,
            minimum=0.0,
            maximum=7 * 24 * 3600.0,
        ),
        job_ttl_seconds=_as_int(
            env.get("RAPT_JOB_TTL_SECONDS"),
            default=DEFAULT_JOB_TTL_SECONDS,
            minimum=0,
            maximum=7 * 24 * 3600,
        ),
        log_drain_seconds=_as_float(
            env.get("RAPT_LOG_DRAIN_SECONDS"),
            default=DEFAULT_LOG_DRAIN_SECONDS,
            minimum=0.0,
            maximum=600.0,
        ),
        request_timeout=_as_int(
            env.get("RAPT_REQUEST_TIMEOUT_SECONDS"),
            default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
            minimum=1,
            maximum=600,
        ),
        log_level=log_level,
    )
    return config.with_overrides(**dict(overrides or {}))
