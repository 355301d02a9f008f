from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .crd import crd_state
from .errors import KubectlError
from .kubectl import KubectlClient

logger = logging.getLogger(__name__)


@dataclass
class StatusReport:
    namespace: str
    all_namespaces: bool = False
    cluster_connected: bool = False
    crd_installed: bool = False
    crd_name: str = ""
    crd_created: datetime | None = None
    tools_count: int = 0
    tools_by_namespace: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.cluster_connected and self.crd_installed

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "cluster_connected": self.cluster_connected,
            "crd_installed": self.crd_installed,
            "tools_count": self.tools_count,
            "current_namespace": self.namespace,
            "all_namespaces": self.all_namespaces,
        }
        if self.crd_name:
            payload["crd_name"] = self.crd_name
        if self.crd_created is not None:
            payload["crd_created"] = self.crd_created.isoformat()
        if self.tools_by_namespace:
            payload["tools_by_namespace"] = dict(self.tools_by_namespace)
        if self.errors:
            payload["errors"] = list(self.errors)
        return payload


def collect_status(
    client: KubectlClient,
    *,
    namespace: str,
    all_namespaces: bool = False,
) -> StatusReport:
    report = StatusReport(namespace=namespace, all_namespaces=all_namespaces)
    try:
        client.cluster_info()
    except KubectlError as exc:
        report.errors.append(f"Cluster connectivity: {exc}")
        return report
    report.cluster_connected = True

    try:
        state = crd_state(client)
    except KubectlError as exc:
        report.errors.append(f"CRD lookup: {exc}")
        return report
    report.crd_installed = state.installed
    report.crd_name = state.name
    report.crd_created = state.created
    if not state.installed:
        report.errors.append("CRD not found; run 'rapt init' to install it")
        return report

    try:
        tools = client.list_tools(namespace=namespace, all_namespaces=all_namespaces)
    except KubectlError as exc:
        report.errors.append(f"Tools status: {exc}")
        return report
    report.tools_count = len(tools)
    if all_namespaces:
        counts = Counter(
            str((item.get("metadata") or {}).get("namespace") or "") for item in tools
        )
        report.tools_by_namespace = dict(sorted(counts.items()))
    logger.debug("Collected status for namespace %s: %s", namespace, report.as_dict())
    return report
