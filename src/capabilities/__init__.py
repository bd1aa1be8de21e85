"""Capability models, registry, input validation and manifest loading."""

from .errors import (
    CapabilityNotFoundError,
    CatalogError,
    DuplicateNameError,
    IntegrityCheckError,
    InvalidDefinitionError,
    ManifestError,
    OperationCancelledError,
    PreconditionError,
    UnknownCategoryError,
    ValidationError,
)
from .loader import CapabilityManifest, load_manifest
from .models import Capability, CapabilityExample, Category, InvocationBinding
from .registry import CapabilityRegistry
from .validation import InputValidator

__all__ = [
    "Capability",
    "CapabilityExample",
    "CapabilityManifest",
    "CapabilityNotFoundError",
    "CapabilityRegistry",
    "CatalogError",
    "Category",
    "DuplicateNameError",
    "InputValidator",
    "IntegrityCheckError",
    "InvalidDefinitionError",
    "InvocationBinding",
    "ManifestError",
    "OperationCancelledError",
    "PreconditionError",
    "UnknownCategoryError",
    "ValidationError",
    "load_manifest",
]
