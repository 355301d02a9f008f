from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import InvalidToolDefinition

TOOL_API_GROUP = "rapt.dev"
TOOL_API_VERSION = "v1alpha1"
TOOL_KIND = "Tool"
TOOL_PLURAL = "tools"
TOOL_RESOURCE = f"{TOOL_PLURAL}.{TOOL_API_GROUP}"
TOOL_CRD_NAME = TOOL_RESOURCE

MANAGED_BY_LABEL = "rapt.dev/managed-by"
MANAGED_BY_VALUE = "rapt"
TOOL_LABEL = "rapt.dev/tool"
JOB_LABEL = "rapt.dev/job"
JOB_NAME_POD_LABEL = "job-name"

CONTAINER_NAME = "tool"
MOUNT_CONTENT_KEY = "content"
DEFAULT_JOB_TTL_SECONDS = 300

JOB_STATE_PENDING = "Pending"
JOB_STATE_RUNNING = "Running"
JOB_STATE_SUCCEEDED = "Succeeded"
JOB_STATE_FAILED = "Failed"
TERMINAL_STATES = frozenset({JOB_STATE_SUCCEEDED, JOB_STATE_FAILED})

POD_PHASE_PENDING = "Pending"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso8601(value: Any) -> datetime | None:
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_optional_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    return text if text != "" else None


@dataclass(frozen=True)
class EnvVar:
    name: str
    value: str

    def as_dict(self) -> dict[str, str]:
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True)
class ArgumentSpec:
    name: str
    description: str = ""
    required: bool = False
    default: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "required": self.required}
        if self.description:
            payload["description"] = self.description
        if self.default is not None:
            payload["default"] = self.default
        return payload


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    namespace: str
    image: str
    command: tuple[str, ...] = ()
    env: tuple[EnvVar, ...] = ()
    arguments: tuple[ArgumentSpec, ...] = ()
    help: str = ""
    created: datetime | None = None

    @classmethod
    def from_resource(cls, raw: dict[str, Any]) -> ToolDefinition:
        if not isinstance(raw, dict):
            raise InvalidToolDefinition("tool resource must be a JSON object")
        metadata = _as_mapping(raw.get("metadata"))
        name = str(metadata.get("name") or "").strip()
        if not name:
            raise InvalidToolDefinition("tool resource is missing metadata.name")
        spec = raw.get("spec")
        if not isinstance(spec, dict):
            raise InvalidToolDefinition(f"tool '{name}' has an invalid spec")
        job_template = spec.get("jobTemplate")
        if not isinstance(job_template, dict):
            raise InvalidToolDefinition(f"tool '{name}' spec is missing jobTemplate")
        image = str(job_template.get("image") or "").strip()
        if not image:
            raise InvalidToolDefinition(f"tool '{name}' spec is missing image")

        raw_command = job_template.get("command")
        command: tuple[str, ...] = ()
        if isinstance(raw_command, list):
            command = tuple(str(item) for item in raw_command)
        elif raw_command is not None:
            raise InvalidToolDefinition(f"tool '{name}' command must be a list of strings")

        env: list[EnvVar] = []
        raw_env = job_template.get("env")
        for item in raw_env if isinstance(raw_env, list) else []:
            if not isinstance(item, dict):
                continue
            env_name = str(item.get("name") or "").strip()
            if not env_name:
                continue
            env.append(EnvVar(name=env_name, value=str(item.get("value") or "")))

        arguments: list[ArgumentSpec] = []
        seen: set[str] = set()
        raw_arguments = spec.get("arguments")
        for item in raw_arguments if isinstance(raw_arguments, list) else []:
            if not isinstance(item, dict):
                continue
            arg_name = str(item.get("name") or "").strip()
            if not arg_name:
                continue
            if arg_name in seen:
                raise InvalidToolDefinition(
                    f"tool '{name}' declares argument '{arg_name}' more than once"
                )
            seen.add(arg_name)
            arguments.append(
                ArgumentSpec(
                    name=arg_name,
                    description=str(item.get("description") or ""),
                    required=item.get("required") is True,
                    default=_as_optional_text(item.get("default")),
                )
            )

        return cls(
            name=name,
            namespace=str(metadata.get("namespace") or ""),
            image=image,
            command=command,
            env=tuple(env),
            arguments=tuple(arguments),
            help=str(spec.get("help") or ""),
            created=parse_iso8601(metadata.get("creationTimestamp")),
        )

    def to_resource(self) -> dict[str, Any]:
        job_template: dict[str, Any] = {
            "image": self.image,
            "env": [item.as_dict() for item in self.env],
        }
        if self.command:
            job_template["command"] = list(self.command)
        spec: dict[str, Any] = {"jobTemplate": job_template}
        if self.arguments:
            spec["arguments"] = [item.as_dict() for item in self.arguments]
        if self.help:
            spec["help"] = self.help
        return {
            "apiVersion": f"{TOOL_API_GROUP}/{TOOL_API_VERSION}",
            "kind": TOOL_KIND,
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": spec,
        }

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "image": self.image,
            "created": self.created.isoformat() if self.created else "",
        }
        if self.command:
            payload["command"] = list(self.command)
        if self.arguments:
            payload["arguments"] = [item.as_dict() for item in self.arguments]
        if self.env:
            payload["environment"] = [item.as_dict() for item in self.env]
        if self.help:
            payload["help"] = self.help
        return payload


@dataclass(frozen=True)
class MountSpec:
    local_path: str
    container_path: str


@dataclass(frozen=True)
class MountBinding:
    index: int
    config_map: str
    container_path: str

    @property
    def volume_name(self) -> str:
        return f"mount-{self.index}"


@dataclass(frozen=True)
class JobSpec:
    name: str
    namespace: str
    tool_name: str
    image: str
    command: tuple[str, ...]
    args: tuple[str, ...]
    env: tuple[EnvVar, ...]
    mounts: tuple[MountBinding, ...]
    ttl_seconds: int = DEFAULT_JOB_TTL_SECONDS

    @property
    def labels(self) -> dict[str, str]:
        return {
            TOOL_LABEL: self.tool_name,
            MANAGED_BY_LABEL: MANAGED_BY_VALUE,
        }

    def to_manifest(self) -> dict[str, Any]:
        container: dict[str, Any] = {
            "name": CONTAINER_NAME,
            "image": self.image,
        }
        if self.command:
            container["command"] = list(self.command)
        if self.args:
            container["args"] = list(self.args)
        if self.env:
            container["env"] = [item.as_dict() for item in self.env]
        pod_spec: dict[str, Any] = {
            "restartPolicy": "Never",
            "containers": [container],
        }
        if self.mounts:
            container["volumeMounts"] = [
                {
                    "name": binding.volume_name,
                    "mountPath": binding.container_path,
                    "subPath": MOUNT_CONTENT_KEY,
                }
                for binding in self.mounts
            ]
            pod_spec["volumes"] = [
                {
                    "name": binding.volume_name,
                    "configMap": {"name": binding.config_map},
                }
                for binding in self.mounts
            ]
        return {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": self.labels,
            },
            "spec": {
                "backoffLimit": 0,
                "ttlSecondsAfterFinished": int(self.ttl_seconds),
                "template": {
                    "metadata": {"labels": self.labels},
                    "spec": pod_spec,
                },
            },
        }


@dataclass(frozen=True)
class JobHandle:
    name: str
    namespace: str
    uid: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class RunRequest:
    tool_name: str
    arguments: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    mounts: tuple[MountSpec, ...] = ()
    wait: bool = False
    follow: bool = False
    timeout: float | None = None


@dataclass
class RunOutcome:
    handle: JobHandle
    job: JobSpec
    record: dict[str, Any]
    state: str | None = None
    log_error: Exception | None = None
