"""Startup wiring for the capability catalogue.

Builds the validator, registry, discovery engine and category manager in
order, registers every definition from the supplied groups, and verifies the
result against expected totals before handing the components out.
"""

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from capabilities import CapabilityManifest, CapabilityRegistry, Category, InputValidator, load_manifest
from capabilities.errors import CatalogError, IntegrityCheckError, OperationCancelledError, raise_if_cancelled
from capabilities.loader import CapabilityGroup, ManifestExpectations
from discovery import CategoryManager, DiscoveryEngine, SearchCriteria

logger = logging.getLogger(__name__)

PROBE_MAX_RESULTS = 10


class IntegrityExpectations(BaseModel):
    tool_count: int | None = None
    category_count: int | None = None
    per_category: dict[Category, int] = Field(default_factory=dict)
    probe_query: str = ""

    @classmethod
    def from_manifest(cls, expected: ManifestExpectations) -> "IntegrityExpectations":
        return cls(
            tool_count=expected.tools,
            category_count=expected.categories,
            per_category=dict(expected.per_category),
            probe_query=expected.probe_query,
        )


class InitializationMetrics(BaseModel):
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: float = 0.0
    index_build_seconds: float = 0.0
    tools_registered: int = 0
    categories_active: int = 0
    validation_checks: int = 0
    success_rate: float = 0.0


@dataclass
class CatalogComponents:
    validator: InputValidator
    registry: CapabilityRegistry
    discovery: DiscoveryEngine
    categories: CategoryManager
    metrics: InitializationMetrics


class CatalogInitializer:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._components: CatalogComponents | None = None
        self._metrics = InitializationMetrics()
        self._started = 0.0

    def initialize(
        self,
        definitions: Sequence[CapabilityGroup],
        expectations: IntegrityExpectations | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> CatalogComponents:
        raise_if_cancelled(cancel)
        with self._lock:
            if self._components is not None:
                return self._components

            if expectations is None:
                expectations = IntegrityExpectations()
            self._started = time.monotonic()
            self._metrics = InitializationMetrics(started_at=datetime.now(timezone.utc))
            self._logger.info(
                "starting capability catalogue initialization groups=%d expected_tools=%s expected_categories=%s",
                len(definitions),
                expectations.tool_count,
                expectations.category_count,
            )

            try:
                components = self._build(definitions, expectations, cancel)
            except (CatalogError, OperationCancelledError) as exc:
                self._logger.error("capability catalogue initialization failed error=%s", exc)
                raise
            finally:
                if self._metrics.completed_at is None:
                    self._metrics.duration_seconds = time.monotonic() - self._started

            self._components = components
            self._logger.info(
                "capability catalogue initialization completed duration=%.3fs tools=%d categories=%d",
                components.metrics.duration_seconds,
                components.metrics.tools_registered,
                components.metrics.categories_active,
            )
            return components

    def initialization_status(self) -> tuple[bool, InitializationMetrics]:
        with self._lock:
            return self._components is not None, self._metrics.model_copy()

    def _build(
        self,
        definitions: Sequence[CapabilityGroup],
        expectations: IntegrityExpectations,
        cancel: threading.Event | None,
    ) -> CatalogComponents:
        raise_if_cancelled(cancel)
        self._logger.debug("initializing input validator")
        validator = InputValidator(self._logger)

        raise_if_cancelled(cancel)
        self._logger.debug("initializing capability registry")
        registry = CapabilityRegistry(validator, self._logger)
        for group in definitions:
            for capability in group.capabilities:
                try:
                    registry.register(capability, cancel=cancel)
                except CatalogError as exc:
                    self._logger.error(
                        "capability group registration failed group=%s capability=%s error=%s",
                        group.name,
                        capability.name,
                        exc,
                    )
                    raise
            self._logger.debug("capability group registered group=%s count=%d", group.name, len(group.capabilities))

        raise_if_cancelled(cancel)
        self._logger.debug("initializing discovery engine")
        discovery = DiscoveryEngine(registry, self._logger, cancel=cancel)
        categories = CategoryManager(registry, self._logger)

        self._check_integrity(registry, discovery, expectations, cancel)

        tools = len(registry)
        self._metrics.completed_at = datetime.now(timezone.utc)
        self._metrics.duration_seconds = time.monotonic() - self._started
        self._metrics.index_build_seconds = discovery.last_build_seconds
        self._metrics.tools_registered = tools
        self._metrics.categories_active = len(registry.categories())
        self._metrics.validation_checks = tools
        self._metrics.success_rate = 1.0
        return CatalogComponents(
            validator=validator,
            registry=registry,
            discovery=discovery,
            categories=categories,
            metrics=self._metrics.model_copy(),
        )

    def _check_integrity(
        self,
        registry: CapabilityRegistry,
        discovery: DiscoveryEngine,
        expectations: IntegrityExpectations,
        cancel: threading.Event | None,
    ) -> None:
        raise_if_cancelled(cancel)
        self._logger.debug("validating catalogue integrity")

        tools = registry.list_capabilities()
        if expectations.tool_count is not None and len(tools) != expectations.tool_count:
            raise IntegrityCheckError(
                f"invalid tool count: expected {expectations.tool_count}, found {len(tools)}"
            )

        categories = registry.categories()
        if expectations.category_count is not None and len(categories) != expectations.category_count:
            raise IntegrityCheckError(
                f"invalid category count: expected {expectations.category_count}, found {len(categories)}"
            )

        for category, expected in expectations.per_category.items():
            found = len(registry.list_capabilities(category))
            if found != expected:
                raise IntegrityCheckError(
                    f"invalid tool count for category {category.value}: expected {expected}, found {found}"
                )

        probe_results = 0
        if expectations.probe_query:
            results = discovery.search(SearchCriteria(query=expectations.probe_query, max_results=PROBE_MAX_RESULTS))
            probe_results = len(results)
            if not results:
                raise IntegrityCheckError(
                    f"discovery returned no results for probe query: {expectations.probe_query}"
                )

        self._logger.debug(
            "catalogue integrity validated tools=%d categories=%d probe_results=%d",
            len(tools),
            len(categories),
            probe_results,
        )


def initialize_catalog(
    manifest: CapabilityManifest | None = None,
    logger: logging.Logger | None = None,
    *,
    cancel: threading.Event | None = None,
) -> CatalogComponents:
    """Load the bundled manifest when none is given and bootstrap a catalogue from it."""
    manifest = manifest or load_manifest()
    initializer = CatalogInitializer(logger)
    return initializer.initialize(
        manifest.groups,
        IntegrityExpectations.from_manifest(manifest.expected),
        cancel=cancel,
    )
