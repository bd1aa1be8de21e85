from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError

from .errors import ManifestError
from .models import Capability, Category

DEFAULT_MANIFEST_PATH = Path(__file__).parent / "manifest.yaml"


class ManifestExpectations(BaseModel):
    tools: int | None = None
    categories: int | None = None
    per_category: dict[Category, int] = Field(default_factory=dict)
    probe_query: str = ""


class CapabilityGroup(BaseModel):
    name: str
    capabilities: list[Capability] = Field(default_factory=list)


class CapabilityManifest(BaseModel):
    groups: list[CapabilityGroup] = Field(default_factory=list)
    expected: ManifestExpectations = Field(default_factory=ManifestExpectations)

    def capabilities(self) -> list[Capability]:
        return [capability for group in self.groups for capability in group.capabilities]


def load_manifest(manifest_path: Path = DEFAULT_MANIFEST_PATH) -> CapabilityManifest:
    try:
        with manifest_path.open("r", encoding="utf-8") as manifest_file:
            raw = yaml.safe_load(manifest_file) or {}
    except OSError as exc:
        raise ManifestError(f"cannot read capability manifest {manifest_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ManifestError(f"invalid YAML in capability manifest {manifest_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ManifestError(f"capability manifest {manifest_path} must be a mapping")

    groups = [_entry_to_group(index, entry) for index, entry in enumerate(raw.get("groups") or [])]

    try:
        expected = ManifestExpectations.model_validate(raw.get("expected") or {})
    except ModelValidationError as exc:
        raise ManifestError(f"invalid 'expected' section in {manifest_path}: {exc}") from exc

    return CapabilityManifest(groups=groups, expected=expected)


def _entry_to_group(index: int, entry: Any) -> CapabilityGroup:
    if not isinstance(entry, dict):
        raise ManifestError(f"group #{index + 1} must be a mapping")

    group_name = str(entry.get("name") or f"group-{index + 1}")
    capabilities: list[Capability] = []
    for position, capability_entry in enumerate(entry.get("capabilities") or []):
        capabilities.append(_entry_to_capability(group_name, position, capability_entry))
    return CapabilityGroup(name=group_name, capabilities=capabilities)


def _entry_to_capability(group_name: str, position: int, entry: Any) -> Capability:
    label = entry.get("name") if isinstance(entry, dict) else None
    label = label or f"#{position + 1}"
    try:
        return Capability.model_validate(entry)
    except ModelValidationError as exc:
        raise ManifestError(f"invalid capability {label} in group {group_name}: {exc}") from exc
