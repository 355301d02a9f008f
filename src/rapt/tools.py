from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .binder import parse_key_values
from .contracts import TOOL_RESOURCE, ArgumentSpec, EnvVar, ToolDefinition
from .errors import InvalidKeyValue, KubectlError, RaptError, ResourceNotFound, ToolNotFound
from .kubectl import KubectlClient

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on", "required"}


def fetch_tool(client: KubectlClient, name: str, *, namespace: str) -> ToolDefinition:
    try:
        raw = client.get_tool(name, namespace=namespace)
    except ResourceNotFound as exc:
        raise ToolNotFound(name, namespace) from exc
    return ToolDefinition.from_resource(raw)


def list_tool_definitions(
    client: KubectlClient,
    *,
    namespace: str,
    all_namespaces: bool = False,
) -> list[ToolDefinition]:
    raw_tools = client.list_tools(namespace=namespace, all_namespaces=all_namespaces)
    tools = [ToolDefinition.from_resource(item) for item in raw_tools]
    return sorted(tools, key=lambda tool: (tool.namespace, tool.name))


def parse_argument_spec(text: str) -> ArgumentSpec:
    """Parse ``name[:required][=default][#description]`` into an ArgumentSpec."""
    raw = str(text or "").strip()
    raw, _, description = raw.partition("#")
    head, sep, default = raw.partition("=")
    name, _, flag = head.partition(":")
    name = name.strip()
    if not name:
        raise InvalidKeyValue(
            f"invalid argument spec: {text} (expected name[:required][=default][#description])",
            details={"value": text},
        )
    return ArgumentSpec(
        name=name,
        description=description.strip(),
        required=flag.strip().lower() in _TRUE_VALUES,
        default=default if sep and default != "" else None,
    )


def build_tool(
    *,
    name: str,
    namespace: str,
    image: str,
    command: str = "",
    env: Iterable[str] = (),
    arguments: Sequence[str] = (),
    help_text: str = "",
) -> ToolDefinition:
    name = str(name or "").strip()
    image = str(image or "").strip()
    if not name:
        raise InvalidKeyValue("tool name is required")
    if not image:
        raise InvalidKeyValue("container image is required")
    env_map = parse_key_values(env, kind="environment variable")
    return ToolDefinition(
        name=name,
        namespace=namespace,
        image=image,
        command=tuple(shlex.split(command)) if command.strip() else (),
        env=tuple(EnvVar(name=key, value=value.strip()) for key, value in env_map.items()),
        arguments=tuple(parse_argument_spec(item) for item in arguments),
        help=help_text.strip(),
    )


def create_tool(client: KubectlClient, tool: ToolDefinition) -> None:
    client.create_resource(tool.to_resource(), namespace=tool.namespace)
    logger.info("Created tool %s/%s", tool.namespace, tool.name)


@dataclass
class DeletionReport:
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def raise_for_failures(self) -> None:
        if self.failed:
            raise RaptError(
                f"failed to delete {len(self.failed)} tool(s): {', '.join(self.failed)}",
                details={"failed": dict(self.failed)},
            )


def delete_tools(
    client: KubectlClient,
    names: Sequence[str],
    *,
    namespace: str,
) -> DeletionReport:
    report = DeletionReport()
    for name in names:
        try:
            client.delete_resource(TOOL_RESOURCE, name, namespace=namespace)
        except KubectlError as exc:
            report.failed[name] = str(exc)
            logger.warning("Failed to delete tool %s/%s: %s", namespace, name, exc)
        else:
            report.deleted.append(name)
    return report
