"""Descriptor validation - gates untrusted plugin configuration before it is used."""

import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping

from nexus.plugins.descriptor import PLUGIN_CATEGORIES

REQUIRED_FIELDS = ("name", "version", "description", "route", "category")

ROUTE_PATTERN = re.compile(r"^/[a-z0-9-]+(/[a-z0-9-]+)*$")
VERSION_PATTERN = re.compile(r"^(\d+\.)?(\d+\.)?(\*|\d+)$")


@dataclass
class ValidationResult:
    """Outcome of validate_descriptor(); falsy when the candidate is rejected."""

    ok: bool
    reasons: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.ok

    def summary(self) -> str:
        return "; ".join(self.reasons)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def validate_descriptor(candidate: Any) -> ValidationResult:
    """Validate a raw descriptor candidate (e.g. parsed plugin.json).

    Pure function: it never touches storage and never raises on malformed
    input. Every missing required field is reported, not just the first.

    Args:
        candidate: Mapping with descriptor fields

    Returns:
        ValidationResult listing every reason the candidate was rejected
    """
    if not isinstance(candidate, Mapping):
        return ValidationResult(False, ["Descriptor must be an object"])

    reasons: List[str] = []

    missing = [name for name in REQUIRED_FIELDS if _is_blank(candidate.get(name))]
    if missing:
        reasons.append(f"Missing required fields: {', '.join(missing)}")

    route = candidate.get("route")
    if not _is_blank(route):
        if not isinstance(route, str) or not ROUTE_PATTERN.match(route):
            reasons.append(
                f"Invalid route {route!r}: must start with / and use lowercase-kebab segments"
            )

    version = candidate.get("version")
    if not _is_blank(version):
        if not isinstance(version, str) or not VERSION_PATTERN.match(version):
            reasons.append(f"Invalid version format {version!r}")

    category = candidate.get("category")
    if not _is_blank(category) and category not in PLUGIN_CATEGORIES:
        reasons.append(
            f"Invalid category {category!r}: expected one of {', '.join(PLUGIN_CATEGORIES)}"
        )

    for name in ("name", "description"):
        value = candidate.get(name)
        if not _is_blank(value) and not isinstance(value, str):
            reasons.append(f"'{name}' must be a string")

    for name in ("dependencies", "tags"):
        value = candidate.get(name)
        if value is not None and (
            not isinstance(value, list) or not all(isinstance(v, str) for v in value)
        ):
            reasons.append(f"'{name}' must be a list of strings")

    for name in ("config", "settings", "metadata"):
        value = candidate.get(name)
        if value is not None and not isinstance(value, Mapping):
            reasons.append(f"'{name}' must be an object")

    return ValidationResult(ok=not reasons, reasons=reasons)
