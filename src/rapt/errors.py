from __future__ import annotations

from typing import Any

ERROR_CONFIG = "config_error"
ERROR_VALIDATION = "validation_error"
ERROR_NOT_FOUND = "not_found"
ERROR_CONFLICT = "already_exists"
ERROR_PROVIDER = "provider_error"
ERROR_MOUNT = "mount_error"
ERROR_SUBMISSION = "submission_error"
ERROR_TIMEOUT = "timeout"
ERROR_WATCH = "watch_interrupted"
ERROR_EXECUTION = "execution_error"


class RaptError(Exception):
    default_code = ERROR_PROVIDER

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}


class ConfigError(RaptError):
    default_code = ERROR_CONFIG


class InvalidKeyValue(RaptError):
    default_code = ERROR_VALIDATION


class InvalidMountSpec(RaptError):
    default_code = ERROR_VALIDATION


class InvalidToolDefinition(RaptError):
    default_code = ERROR_VALIDATION


class KubectlError(RaptError):
    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        stderr: str = "",
        returncode: int | None = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "command": list(command or []),
                "stderr": stderr,
                "returncode": returncode,
            },
        )
        self.command = list(command or [])
        self.stderr = stderr
        self.returncode = returncode


class ResourceNotFound(KubectlError):
    default_code = ERROR_NOT_FOUND


class ResourceExists(KubectlError):
    default_code = ERROR_CONFLICT


class ToolNotFound(RaptError):
    default_code = ERROR_NOT_FOUND

    def __init__(self, tool_name: str, namespace: str) -> None:
        super().__init__(
            f"tool '{tool_name}' not found in namespace '{namespace}'",
            details={"tool": tool_name, "namespace": namespace},
        )
        self.tool_name = tool_name
        self.namespace = namespace


class MissingRequiredArgument(RaptError):
    default_code = ERROR_VALIDATION

    def __init__(self, argument_name: str) -> None:
        super().__init__(
            f"required argument '{argument_name}' not provided",
            details={"argument": argument_name},
        )
        self.argument_name = argument_name


class MountReadError(RaptError):
    default_code = ERROR_MOUNT

    def __init__(self, index: int, local_path: str, cause: OSError) -> None:
        super().__init__(
            f"failed to read mount {index} file {local_path}: {cause}",
            details={"index": index, "local_path": local_path},
        )
        self.index = index
        self.local_path = local_path
        self.cause = cause


class SubmissionError(RaptError):
    default_code = ERROR_SUBMISSION

    def __init__(self, job_name: str, cause: Exception) -> None:
        super().__init__(
            f"failed to create job '{job_name}' in cluster: {cause}",
            details={"job": job_name},
        )
        self.job_name = job_name
        self.cause = cause


class JobWatchTimeout(RaptError, TimeoutError):
    default_code = ERROR_TIMEOUT

    def __init__(self, job_name: str, timeout: float) -> None:
        super().__init__(
            f"timed out after {timeout:g} seconds waiting for job '{job_name}' "
            "(the job keeps running in the cluster)",
            details={"job": job_name, "timeout": timeout},
        )
        self.job_name = job_name
        self.timeout = timeout


class WatchInterrupted(RaptError):
    default_code = ERROR_WATCH

    def __init__(self, job_name: str, reason: str) -> None:
        super().__init__(
            f"watch for job '{job_name}' ended before a terminal state: {reason}",
            details={"job": job_name, "reason": reason},
        )
        self.job_name = job_name
        self.reason = reason


class JobFailed(RaptError):
    default_code = ERROR_EXECUTION

    def __init__(self, job_name: str) -> None:
        super().__init__(f"job '{job_name}' failed", details={"job": job_name})
        self.job_name = job_name


class PodReadinessTimeout(RaptError):
    default_code = ERROR_TIMEOUT

    def __init__(self, job_name: str, attempts: int) -> None:
        super().__init__(
            f"timeout waiting for pod to be ready for job '{job_name}' "
            f"after {attempts} attempts",
            details={"job": job_name, "attempts": attempts},
        )
        self.job_name = job_name
        self.attempts = attempts
