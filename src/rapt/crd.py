from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from importlib import resources
from typing import Any

import yaml

from .contracts import TOOL_CRD_NAME, parse_iso8601
from .errors import ResourceExists, ResourceNotFound
from .kubectl import KubectlClient

logger = logging.getLogger(__name__)

_CRD_KIND = "customresourcedefinition"


def load_tool_crd() -> dict[str, Any]:
    text = resources.files("rapt").joinpath("data").joinpath("tool.yaml").read_text(encoding="utf-8")
    manifest = yaml.safe_load(text)
    if not isinstance(manifest, dict):
        raise ValueError("bundled tool CRD manifest is not a mapping")
    return manifest


def install_crd(client: KubectlClient) -> bool:
    try:
        client.create_resource(load_tool_crd())
    except ResourceExists:
        logger.info("CRD %s already exists", TOOL_CRD_NAME)
        return False
    logger.info("Created CRD %s", TOOL_CRD_NAME)
    return True


def purge_crd(client: KubectlClient) -> bool:
    try:
        client.delete_resource(_CRD_KIND, TOOL_CRD_NAME)
    except ResourceNotFound:
        logger.info("CRD %s not found", TOOL_CRD_NAME)
        return False
    logger.info("Deleted CRD %s", TOOL_CRD_NAME)
    return True


@dataclass(frozen=True)
class CrdState:
    installed: bool
    name: str = ""
    created: datetime | None = None


def crd_state(client: KubectlClient) -> CrdState:
    try:
        record = client.get_resource(_CRD_KIND, TOOL_CRD_NAME)
    except ResourceNotFound:
        return CrdState(installed=False)
    metadata = record.get("metadata") if isinstance(record.get("metadata"), dict) else {}
    return CrdState(
        installed=True,
        name=str(metadata.get("name") or TOOL_CRD_NAME),
        created=parse_iso8601(metadata.get("creationTimestamp")),
    )
