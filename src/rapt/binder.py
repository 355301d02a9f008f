from __future__ import annotations

from typing import Iterable, Mapping, Sequence

from .contracts import ArgumentSpec
from .errors import InvalidKeyValue, MissingRequiredArgument


def bind_arguments(
    specs: Sequence[ArgumentSpec],
    supplied: Mapping[str, str],
) -> list[str]:
    bound: list[str] = []
    for spec in specs:
        if spec.name in supplied:
            bound.append(str(supplied[spec.name]))
        elif spec.default is not None:
            bound.append(spec.default)
        elif spec.required:
            raise MissingRequiredArgument(spec.name)
    return bound


def unknown_arguments(
    specs: Sequence[ArgumentSpec],
    supplied: Mapping[str, str],
) -> list[str]:
    declared = {spec.name for spec in specs}
    return sorted(name for name in supplied if name not in declared)


def parse_key_values(items: Iterable[str], *, kind: str = "argument") -> dict[str, str]:
    parsed: dict[str, str] = {}
    for item in items:
        key, sep, value = str(item).partition("=")
        key = key.strip()
        if not sep or not key:
            raise InvalidKeyValue(
                f"invalid {kind} format: {item} (expected key=value)",
                details={"value": item},
            )
        parsed[key] = value
    return parsed
