import threading


class CatalogError(Exception):
    """Base class for capability catalogue failures."""


class InvalidDefinitionError(CatalogError, ValueError):
    """Raised when a capability definition is incomplete or malformed."""


class DuplicateNameError(CatalogError):
    def __init__(self, name: str) -> None:
        super().__init__(f"capability already registered: {name}")
        self.name = name


class CapabilityNotFoundError(CatalogError, LookupError):
    def __init__(self, name: str, suggestions: list[str] | None = None, category: str = "") -> None:
        self.name = name
        self.suggestions = list(suggestions or [])
        self.category = category
        super().__init__(self._render())

    def _render(self) -> str:
        message = f"capability not found: {self.name}"
        if self.suggestions:
            message += f" (available capabilities: {', '.join(self.suggestions)})"
        if self.category:
            message += f" (try searching in category: {self.category})"
        return message


class ValidationError(CatalogError, ValueError):
    """Field-scoped input validation failure.

    ``field`` is a dot-separated path into the input and is empty for
    root-level problems. ``capability`` is filled in when the error was
    produced while validating the input of a registered capability.
    """

    def __init__(
        self,
        field: str,
        message: str,
        code: str = "validation_failed",
        suggestions: list[str] | None = None,
        capability: str = "",
    ) -> None:
        self.field = field
        self.message = message
        self.code = code
        self.suggestions = list(suggestions or [])
        self.capability = capability
        super().__init__(self._render())

    def _render(self) -> str:
        message = f"{self.field}: {self.message}" if self.field else self.message
        if self.suggestions:
            message += f" (suggestions: {', '.join(self.suggestions)})"
        if self.capability:
            message = f"input validation failed for capability {self.capability}: {message}"
        return message

    def for_capability(self, name: str) -> "ValidationError":
        return ValidationError(
            field=self.field,
            message=self.message,
            code=self.code,
            suggestions=self.suggestions,
            capability=name,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "field": self.field,
            "message": self.message,
            "code": self.code,
            "suggestions": list(self.suggestions),
        }


class PreconditionError(CatalogError, ValueError):
    """Raised at construction time when a required collaborator is missing."""


class UnknownCategoryError(CatalogError, LookupError):
    def __init__(self, category: object) -> None:
        super().__init__(f"unknown category: {category}")
        self.category = category


class ManifestError(CatalogError):
    """Raised when a capability manifest cannot be loaded."""


class IntegrityCheckError(CatalogError):
    """Raised when the bootstrapped catalogue does not match expected totals."""


class OperationCancelledError(RuntimeError):
    """Raised when an operation is invoked with an already-cancelled signal."""


def raise_if_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("operation cancelled")
