import logging
import threading
from collections.abc import Mapping
from typing import Any

from .errors import (
    CapabilityNotFoundError,
    DuplicateNameError,
    InvalidDefinitionError,
    PreconditionError,
    ValidationError,
    raise_if_cancelled,
)
from .locking import ReadWriteLock
from .models import MAX_TIMEOUT, MIN_TIMEOUT, Capability, Category
from .validation import InputValidator, input_summary

MAX_SUGGESTIONS = 5


class CapabilityRegistry:
    """System of record for capability definitions.

    Definitions are copied on the way in and on the way out, so callers never
    hold a reference into the store.
    """

    def __init__(self, validator: InputValidator | None, logger: logging.Logger | None) -> None:
        if validator is None:
            raise PreconditionError("validator cannot be None")
        if logger is None:
            raise PreconditionError("logger cannot be None")
        self._validator = validator
        self._logger = logger
        self._capabilities: dict[str, Capability] = {}
        self._categories: dict[Category, set[str]] = {}
        self._lock = ReadWriteLock()

    def register(self, capability: Capability, *, cancel: threading.Event | None = None) -> None:
        raise_if_cancelled(cancel)
        if capability is None:
            raise InvalidDefinitionError("capability cannot be None")

        try:
            self._check_definition(capability)
        except InvalidDefinitionError as exc:
            self._logger.warning("capability registration rejected name=%s error=%s", capability.name, exc)
            raise

        stored = capability.model_copy(deep=True, update={"category": Category(capability.category)})
        with self._lock.write_locked():
            if stored.name in self._capabilities:
                raise DuplicateNameError(stored.name)
            self._capabilities[stored.name] = stored
            self._categories.setdefault(stored.category, set()).add(stored.name)
            total = len(self._capabilities)

        self._logger.info(
            "capability registered name=%s category=%s total=%d",
            stored.name,
            stored.category.value,
            total,
        )

    def get(self, name: str, *, cancel: threading.Event | None = None) -> Capability:
        raise_if_cancelled(cancel)
        with self._lock.read_locked():
            capability = self._capabilities.get(name)
            if capability is None:
                suggestions = self._similar_names(name)
                available = len(self._capabilities)
            else:
                capability = capability.model_copy(deep=True)

        if capability is None:
            self._logger.debug("capability lookup failed name=%s available=%d", name, available)
            raise CapabilityNotFoundError(name, suggestions)

        self._logger.debug("capability lookup successful name=%s category=%s", name, capability.category.value)
        return capability

    def list_capabilities(
        self,
        category: Category | str = "",
        *,
        cancel: threading.Event | None = None,
    ) -> list[Capability]:
        """List capabilities sorted by name; an empty category means all of them."""
        raise_if_cancelled(cancel)
        with self._lock.read_locked():
            if not category:
                selected = list(self._capabilities.values())
            else:
                parsed = Category.parse(category)
                names = self._categories.get(parsed, set()) if parsed is not None else set()
                selected = [self._capabilities[name] for name in names if name in self._capabilities]
            capabilities = [capability.model_copy(deep=True) for capability in selected]
            total = len(self._capabilities)

        capabilities.sort(key=lambda capability: capability.name)
        self._logger.debug(
            "capability listing completed category=%s count=%d total=%d",
            category.value if isinstance(category, Category) else category,
            len(capabilities),
            total,
        )
        return capabilities

    def validate_input(
        self,
        name: str,
        data: Mapping[str, Any] | None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        """Validate ``data`` against the named capability's input schema.

        Raises CapabilityNotFoundError for an unknown name and ValidationError
        (with ``capability`` set) for bad arguments.
        """
        raise_if_cancelled(cancel)
        capability = self.get(name)
        try:
            self._validator.validate_against_schema(data, capability.input_schema)
        except ValidationError as exc:
            self._logger.debug(
                "capability input validation failed name=%s error=%s input=%s",
                name,
                exc,
                input_summary(data),
            )
            raise exc.for_capability(name) from exc

        self._logger.debug("capability input validation successful name=%s input=%s", name, input_summary(data))

    def categories(self, *, cancel: threading.Event | None = None) -> list[Category]:
        raise_if_cancelled(cancel)
        with self._lock.read_locked():
            populated = [category for category, names in self._categories.items() if names]
        populated.sort(key=lambda category: category.value)
        self._logger.debug("category listing completed count=%d", len(populated))
        return populated

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._capabilities)

    def __contains__(self, name: object) -> bool:
        with self._lock.read_locked():
            return name in self._capabilities

    @staticmethod
    def _check_definition(capability: Capability) -> None:
        if not capability.name:
            raise InvalidDefinitionError("capability name cannot be empty")
        if not capability.description:
            raise InvalidDefinitionError("capability description cannot be empty")
        if capability.input_schema is None:
            raise InvalidDefinitionError("capability input schema cannot be None")
        if capability.invocation is None or not capability.invocation.command:
            raise InvalidDefinitionError("capability invocation command cannot be empty")
        if not capability.version:
            raise InvalidDefinitionError("capability version cannot be empty")
        if not Category.is_known(capability.category):
            raise InvalidDefinitionError(f"invalid capability category: {capability.category}")
        if capability.timeout is None or not MIN_TIMEOUT <= capability.timeout <= MAX_TIMEOUT:
            raise InvalidDefinitionError(
                f"capability timeout must be between 1 second and 10 minutes, got: {capability.timeout}"
            )
        schema_type = capability.input_schema.get("type")
        if schema_type is not None and schema_type != "object":
            raise InvalidDefinitionError(f"capability input schema type must be 'object', got: {schema_type}")

    def _similar_names(self, name: str) -> list[str]:
        # Caller holds the read lock.
        wanted = name.lower()
        suggestions: list[str] = []
        for candidate in sorted(self._capabilities):
            candidate_lc = candidate.lower()
            if wanted in candidate_lc or candidate_lc in wanted:
                suggestions.append(candidate)
                if len(suggestions) == MAX_SUGGESTIONS:
                    break
        return suggestions
