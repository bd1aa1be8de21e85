import logging
import threading
from datetime import timedelta

import pytest

from bootstrap import CatalogInitializer, IntegrityExpectations, initialize_catalog
from capabilities.errors import DuplicateNameError, IntegrityCheckError, OperationCancelledError
from capabilities.loader import CapabilityGroup, load_manifest
from capabilities.models import Capability, Category, InvocationBinding
from discovery.models import SearchCriteria

LOGGER = logging.getLogger("tests.bootstrap")


def _build_capability(name: str, category: Category = Category.INVOICE_MANAGEMENT) -> Capability:
    return Capability(
        name=name,
        description=f"Run the {name.replace('_', ' ')} operation",
        input_schema={"type": "object"},
        category=category,
        invocation=InvocationBinding(command="go-invoice"),
        version="1.0.0",
        timeout=timedelta(seconds=10),
    )


def _build_groups() -> list[CapabilityGroup]:
    return [
        CapabilityGroup(
            name="invoices",
            capabilities=[_build_capability("invoice_create"), _build_capability("invoice_list")],
        ),
        CapabilityGroup(name="clients", capabilities=[_build_capability("client_create", Category.CLIENT_MANAGEMENT)]),
    ]


class _CancelAfter(threading.Event):
    """Reports unset for the first ``checks`` polls, then set."""

    def __init__(self, checks: int) -> None:
        super().__init__()
        self._remaining = checks

    def is_set(self) -> bool:
        if self._remaining > 0:
            self._remaining -= 1
            return False
        return True


def test_initialize_catalog_from_bundled_manifest() -> None:
    components = initialize_catalog(logger=LOGGER)

    assert len(components.registry) == 22
    assert len(components.registry.categories()) == 5
    assert components.metrics.tools_registered == 22
    assert components.metrics.categories_active == 5
    assert components.metrics.success_rate == 1.0
    assert components.metrics.completed_at is not None
    assert components.discovery.search(SearchCriteria(query="invoice"))
    assert components.categories.get_metadata(Category.INVOICE_MANAGEMENT).priority == 1


def test_bundled_manifest_validates_sample_input() -> None:
    components = initialize_catalog(load_manifest(), LOGGER)

    components.registry.validate_input(
        "invoice_create",
        {"client_name": "Acme Corp", "client_email": "finance@acme.com", "invoice_date": "2025-01-31"},
    )


def test_initialize_with_expectations() -> None:
    initializer = CatalogInitializer(LOGGER)

    components = initializer.initialize(
        _build_groups(),
        IntegrityExpectations(
            tool_count=3,
            category_count=2,
            per_category={Category.INVOICE_MANAGEMENT: 2, Category.CLIENT_MANAGEMENT: 1},
            probe_query="invoice",
        ),
    )

    initialized, metrics = initializer.initialization_status()
    assert initialized is True
    assert metrics.tools_registered == 3
    assert metrics.validation_checks == 3
    assert components.metrics.categories_active == 2


def test_second_initialize_returns_same_components() -> None:
    initializer = CatalogInitializer(LOGGER)

    first = initializer.initialize(_build_groups())
    second = initializer.initialize([])

    assert second is first


def test_unset_expectations_are_not_checked() -> None:
    components = CatalogInitializer(LOGGER).initialize(_build_groups(), IntegrityExpectations())

    assert len(components.registry) == 3


@pytest.mark.parametrize(
    ("expectations", "message"),
    [
        (IntegrityExpectations(tool_count=4), "invalid tool count: expected 4, found 3"),
        (IntegrityExpectations(category_count=5), "invalid category count: expected 5, found 2"),
        (
            IntegrityExpectations(per_category={Category.CLIENT_MANAGEMENT: 2}),
            "invalid tool count for category client_management: expected 2, found 1",
        ),
        (IntegrityExpectations(probe_query="zzzzzz"), "no results for probe query: zzzzzz"),
    ],
)
def test_integrity_failures(expectations: IntegrityExpectations, message: str) -> None:
    initializer = CatalogInitializer(LOGGER)

    with pytest.raises(IntegrityCheckError, match=message):
        initializer.initialize(_build_groups(), expectations)

    initialized, metrics = initializer.initialization_status()
    assert initialized is False
    assert metrics.started_at is not None
    assert metrics.success_rate == 0.0


def test_registration_failure_aborts_and_names_group(caplog: pytest.LogCaptureFixture) -> None:
    groups = _build_groups() + [CapabilityGroup(name="duplicates", capabilities=[_build_capability("invoice_create")])]
    initializer = CatalogInitializer(LOGGER)

    with caplog.at_level(logging.ERROR, logger="tests.bootstrap"):
        with pytest.raises(DuplicateNameError):
            initializer.initialize(groups)

    assert "group=duplicates" in caplog.text
    assert initializer.initialization_status()[0] is False


def test_status_before_initialize() -> None:
    initialized, metrics = CatalogInitializer(LOGGER).initialization_status()

    assert initialized is False
    assert metrics.started_at is None
    assert metrics.tools_registered == 0


def test_missing_logger_uses_module_logger() -> None:
    components = CatalogInitializer().initialize(_build_groups())

    assert len(components.registry) == 3


def test_cancelled_signal_aborts_initialize() -> None:
    cancel = threading.Event()
    cancel.set()
    initializer = CatalogInitializer(LOGGER)

    with pytest.raises(OperationCancelledError):
        initializer.initialize(_build_groups(), cancel=cancel)

    assert initializer.initialization_status()[0] is False


def test_cancellation_during_build_records_final_duration(caplog: pytest.LogCaptureFixture) -> None:
    initializer = CatalogInitializer(LOGGER)

    with caplog.at_level(logging.ERROR, logger="tests.bootstrap"):
        with pytest.raises(OperationCancelledError):
            initializer.initialize(_build_groups(), cancel=_CancelAfter(2))

    assert "capability catalogue initialization failed error=operation cancelled" in caplog.text
    initialized, first = initializer.initialization_status()
    _, second = initializer.initialization_status()
    assert initialized is False
    assert first.started_at is not None
    assert first.completed_at is None
    assert first.duration_seconds > 0
    assert second.duration_seconds == first.duration_seconds
