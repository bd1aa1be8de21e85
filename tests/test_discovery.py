import logging
import threading
from datetime import timedelta

import pytest

from capabilities.errors import OperationCancelledError, PreconditionError, UnknownCategoryError
from capabilities.models import Capability, CapabilityExample, Category, InvocationBinding
from capabilities.registry import CapabilityRegistry
from capabilities.validation import InputValidator
from discovery.engine import DiscoveryEngine, is_fuzzy_match, workflow_for_context
from discovery.index import SearchIndex, base_relevance, tokenize
from discovery.models import SearchCriteria

LOGGER = logging.getLogger("tests.discovery")


def _build_capability(
    name: str,
    category: Category = Category.INVOICE_MANAGEMENT,
    description: str = "",
    help_text: str = "",
    examples: int = 0,
) -> Capability:
    return Capability(
        name=name,
        description=description or f"Run the {name.replace('_', ' ')} operation",
        input_schema={"type": "object"},
        examples=[CapabilityExample(description=f"example {index}") for index in range(examples)],
        category=category,
        invocation=InvocationBinding(command="go-invoice"),
        help_text=help_text,
        version="1.0.0",
        timeout=timedelta(seconds=30),
    )


def _build_registry(*capabilities: Capability) -> CapabilityRegistry:
    registry = CapabilityRegistry(InputValidator(LOGGER), LOGGER)
    for capability in capabilities:
        registry.register(capability)
    return registry


def _build_engine(*capabilities: Capability) -> DiscoveryEngine:
    return DiscoveryEngine(_build_registry(*capabilities), LOGGER)


def _mixed_catalog() -> tuple[Capability, ...]:
    return (
        _build_capability("import_csv", Category.DATA_IMPORT),
        _build_capability("import_validate", Category.DATA_IMPORT),
        _build_capability("import_preview", Category.DATA_IMPORT),
        _build_capability("client_create", Category.CLIENT_MANAGEMENT, "Create and register a new client"),
        _build_capability("invoice_create", Category.INVOICE_MANAGEMENT, "Create a new invoice for a client"),
    )


def test_tokenize_splits_and_drops_short_tokens() -> None:
    assert tokenize("Invoice_create-v2.0, Big  ID") == ["invoice", "create", "big"]
    assert tokenize("") == []


def test_base_relevance_bonuses() -> None:
    plain = _build_capability("plain", description="short")
    rich = _build_capability(
        "rich",
        description="A description that is comfortably longer than fifty characters in total",
        help_text="help",
        examples=1,
    )

    assert base_relevance(plain) == pytest.approx(0.5)
    assert base_relevance(rich) == pytest.approx(0.8)


def test_index_maps_tokens_to_capabilities() -> None:
    capability = _build_capability("invoice_create", description="Create invoice invoice", help_text="Creates invoices")

    index = SearchIndex.build([capability])

    assert [tool.name for tool in index.by_name_token["invoice"]] == ["invoice_create"]
    assert [tool.name for tool in index.by_description_token["invoice"]] == ["invoice_create"]
    assert [tool.name for tool in index.by_category[Category.INVOICE_MANAGEMENT]] == ["invoice_create"]
    assert index.by_tag == {}
    assert len(index.full_text["invoice"]) == 1
    assert index.full_text["invoice"][0].matched_fields == ("name", "description")
    assert index.full_text["invoices"][0].matched_fields == ("help_text",)


@pytest.mark.parametrize(
    ("token", "other", "expected"),
    [
        ("invoice", "invoices", True),
        ("invoicing", "invoice", True),
        ("client", "clients", True),
        ("cre", "create", True),
        ("export", "exact", False),
        ("abc", "abd", False),
        ("ab", "abc", False),
    ],
)
def test_is_fuzzy_match(token: str, other: str, expected: bool) -> None:
    assert is_fuzzy_match(token, other) is expected


def test_engine_requires_registry_and_logger() -> None:
    with pytest.raises(PreconditionError, match="registry cannot be None"):
        DiscoveryEngine(None, LOGGER)
    with pytest.raises(PreconditionError, match="logger cannot be None"):
        DiscoveryEngine(_build_registry(), None)


def test_search_by_query_finds_invoice_create() -> None:
    engine = _build_engine(*_mixed_catalog())

    results = engine.search(SearchCriteria(query="invoice"))

    assert results
    assert results[0].tool.name == "invoice_create"
    assert results[0].relevance_score > 0


def test_exact_match_score_includes_fuzzy_boosts() -> None:
    engine = _build_engine(_build_capability("client_list", Category.CLIENT_MANAGEMENT, "List clients"))

    results = engine.search(SearchCriteria(query="clients"))

    assert len(results) == 1
    # 0.5 base + 0.3 exact + 0.1 for each fuzzy neighbour ("client", "clients")
    assert results[0].relevance_score == pytest.approx(1.0)
    assert results[0].match_context == "Matched on: clients"
    assert results[0].matched_fields == ["description"]
    assert results[0].category_match is False


def test_fuzzy_only_match_scores_below_exact_match() -> None:
    engine = _build_engine(_build_capability("invoice_show", description="Show one"))

    exact = engine.search(SearchCriteria(query="invoice"))
    fuzzy = engine.search(SearchCriteria(query="invoicing"))

    assert fuzzy[0].match_context == "Fuzzy match: invoicing ~ invoice"
    assert fuzzy[0].relevance_score == pytest.approx(0.7)
    assert exact[0].relevance_score > fuzzy[0].relevance_score


def test_more_matching_tokens_score_higher() -> None:
    engine = _build_engine(
        _build_capability("invoice_create", description="Create a new invoice"),
        _build_capability("invoice_show", description="Show one"),
    )

    results = engine.search(SearchCriteria(query="invoice create"))

    scores = {result.tool.name: result.relevance_score for result in results}
    assert scores["invoice_create"] > scores["invoice_show"]
    assert [result.tool.name for result in results] == ["invoice_create", "invoice_show"]


def test_exact_repeat_merges_matched_fields() -> None:
    engine = _build_engine(
        _build_capability("invoice_create", description="Create a new bill", help_text="Issues a bill"),
    )

    results = engine.search(SearchCriteria(query="create bill"))

    assert results[0].matched_fields == ["name", "description", "help_text"]


def test_query_without_matches_returns_empty() -> None:
    engine = _build_engine(*_mixed_catalog())

    assert engine.search(SearchCriteria(query="zzzzzz")) == []


def test_category_only_search_returns_category_members() -> None:
    engine = _build_engine(*_mixed_catalog())

    results = engine.search(SearchCriteria(categories=[Category.DATA_IMPORT]))

    assert len(results) == 3
    assert all(result.category_match for result in results)
    assert all(result.relevance_score == pytest.approx(0.8) for result in results)
    assert {result.tool.name for result in results} == {"import_csv", "import_validate", "import_preview"}
    assert results[0].match_context == "Category match: data_import"


def test_query_with_categories_keeps_only_members() -> None:
    engine = _build_engine(*_mixed_catalog())

    results = engine.search(SearchCriteria(query="create", categories=["client_management"]))

    assert [result.tool.name for result in results] == ["client_create"]


def test_empty_criteria_returns_all_tools_with_base_relevance() -> None:
    catalog = _mixed_catalog()
    engine = _build_engine(*catalog)

    results = engine.search(SearchCriteria(query="   "))

    assert len(results) == len(catalog)
    assert all(result.match_context == "All tools" for result in results)
    assert all(result.relevance_score == pytest.approx(0.5) for result in results)


def test_min_relevance_drops_low_scores() -> None:
    engine = _build_engine(
        _build_capability("rich_tool", help_text="documented", examples=1),
        _build_capability("plain_tool"),
    )

    results = engine.search(SearchCriteria(min_relevance_score=0.6))

    assert [result.tool.name for result in results] == ["rich_tool"]


def test_sort_options_and_truncation() -> None:
    engine = _build_engine(*_mixed_catalog())

    by_name = engine.search(SearchCriteria(sort_by="name"))
    by_name_desc = engine.search(SearchCriteria(sort_by="name", sort_order="desc"))
    by_category = engine.search(SearchCriteria(sort_by="category", max_results=2))

    names = [result.tool.name for result in by_name]
    assert names == sorted(names)
    assert [result.tool.name for result in by_name_desc] == sorted(names, reverse=True)
    assert [result.tool.category for result in by_category] == [Category.CLIENT_MANAGEMENT, Category.DATA_IMPORT]


def test_relevance_sort_ascending() -> None:
    engine = _build_engine(
        _build_capability("rich_tool", help_text="documented", examples=1),
        _build_capability("plain_tool"),
    )

    results = engine.search(SearchCriteria(sort_order="asc"))

    assert [result.tool.name for result in results] == ["plain_tool", "rich_tool"]


def test_search_is_deterministic() -> None:
    engine = _build_engine(*_mixed_catalog())
    criteria = SearchCriteria(query="create client import")

    first = engine.search(criteria)
    second = engine.search(criteria)

    assert [(r.tool.name, r.relevance_score) for r in first] == [(r.tool.name, r.relevance_score) for r in second]


def test_search_requires_criteria() -> None:
    engine = _build_engine()

    with pytest.raises(PreconditionError, match="search criteria cannot be None"):
        engine.search(None)


def test_search_results_are_copies() -> None:
    engine = _build_engine(*_mixed_catalog())

    first = engine.search(SearchCriteria(query="invoice"))
    first[0].tool.description = "changed"

    assert engine.search(SearchCriteria(query="invoice"))[0].tool.description == "Create a new invoice for a client"


def test_index_is_a_snapshot_until_rebuild() -> None:
    registry = _build_registry(_build_capability("invoice_create"))
    engine = DiscoveryEngine(registry, LOGGER)

    registry.register(_build_capability("export_data", Category.DATA_EXPORT))
    assert engine.search(SearchCriteria(query="export")) == []

    engine.rebuild()
    assert [result.tool.name for result in engine.search(SearchCriteria(query="export"))] == ["export_data"]


def test_discover_all_categories() -> None:
    engine = _build_engine(*_mixed_catalog(), _build_capability("invoice_list"), _build_capability("invoice_show"))

    result = engine.discover_by_category("")

    assert result.category is None
    assert result.tool_count == 7
    assert len(result.tools) == 7
    assert result.related_categories == list(Category)
    assert len(result.recommended_tools) == 5


def test_discover_two_populated_categories() -> None:
    engine = _build_engine(
        _build_capability("import_csv", Category.DATA_IMPORT),
        _build_capability("client_create", Category.CLIENT_MANAGEMENT),
        _build_capability("client_list", Category.CLIENT_MANAGEMENT),
    )

    result = engine.discover_by_category()

    assert result.tool_count == 3
    assert result.related_categories == list(Category)
    assert len(result.recommended_tools) <= 5


def test_discover_single_category() -> None:
    engine = _build_engine(
        *_mixed_catalog(),
        _build_capability("import_mapping", Category.DATA_IMPORT),
    )

    result = engine.discover_by_category(Category.DATA_IMPORT)

    assert result.category == Category.DATA_IMPORT
    assert result.tool_count == 4
    assert Category.DATA_IMPORT not in result.related_categories
    assert len(result.related_categories) == len(Category) - 1
    assert [tool.name for tool in result.recommended_tools] == ["import_csv", "import_mapping", "import_preview"]


def test_discover_empty_known_category() -> None:
    engine = _build_engine(*_mixed_catalog())

    result = engine.discover_by_category("reporting")

    assert result.tool_count == 0
    assert result.tools == []


def test_discover_unknown_category() -> None:
    engine = _build_engine(*_mixed_catalog())

    with pytest.raises(UnknownCategoryError, match="unknown category: billing"):
        engine.discover_by_category("billing")


@pytest.mark.parametrize(
    ("context", "workflow"),
    [
        ("I need to invoice a client", "invoice_management"),
        ("add a new Client", "client_management"),
        ("import my timesheet", "data_import"),
        ("generate a PDF", "data_export"),
        ("check the config", "configuration"),
        ("hello", "general"),
    ],
)
def test_workflow_for_context(context: str, workflow: str) -> None:
    assert workflow_for_context(context) == workflow


def test_recommend_skips_unregistered_tools_and_honours_limit() -> None:
    engine = _build_engine(
        _build_capability("invoice_create"),
        _build_capability("invoice_list"),
        _build_capability("generate_html", Category.DATA_EXPORT),
    )

    recommendations = engine.recommend("create an invoice")
    limited = engine.recommend("create an invoice", limit=1)

    assert [item.tool_name for item in recommendations] == ["invoice_create", "invoice_list", "generate_html"]
    assert recommendations[0].confidence == pytest.approx(0.9)
    assert recommendations[0].rationale == "Essential for invoice creation workflow"
    assert recommendations[0].tool is not None
    assert [item.tool_name for item in limited] == ["invoice_create"]


def test_recommend_general_context_is_empty() -> None:
    engine = _build_engine(*_mixed_catalog())

    assert engine.recommend("hello there") == []


def test_cancelled_signal_aborts_discovery() -> None:
    engine = _build_engine(*_mixed_catalog())
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelledError):
        engine.search(SearchCriteria(query="invoice"), cancel=cancel)
    with pytest.raises(OperationCancelledError):
        engine.discover_by_category("", cancel=cancel)
    with pytest.raises(OperationCancelledError):
        engine.recommend("invoice", cancel=cancel)
    with pytest.raises(OperationCancelledError):
        engine.rebuild(cancel=cancel)
