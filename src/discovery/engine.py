import logging
import threading
import time

from capabilities.errors import PreconditionError, UnknownCategoryError, raise_if_cancelled
from capabilities.models import Capability, Category
from capabilities.registry import CapabilityRegistry

from .index import SearchIndex, base_relevance, tokenize
from .models import CategoryDiscoveryResult, SearchCriteria, SearchResult, ToolRecommendation

EXACT_MATCH_BOOST = 0.3
EXACT_REPEAT_BOOST = 0.2
FUZZY_MATCH_BOOST = 0.2
FUZZY_REPEAT_BOOST = 0.1
CATEGORY_MATCH_RELEVANCE = 0.8
FUZZY_PREFIX_LENGTH = 3
FUZZY_PREFIX_MIN_TOKEN = 5

DEFAULT_RECOMMENDATION_LIMIT = 5
CATEGORY_RECOMMENDED_TOOLS = 3
OVERVIEW_RECOMMENDED_TOOLS = 5

# Checked in order; the first bucket with a keyword contained in the context wins.
_WORKFLOW_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("invoice_management", ("invoice",)),
    ("client_management", ("client",)),
    ("data_import", ("import",)),
    ("data_export", ("export", "generate")),
    ("configuration", ("config",)),
)

_WORKFLOW_RECOMMENDATIONS: dict[str, tuple[tuple[str, float, str, str], ...]] = {
    "invoice_management": (
        ("invoice_create", 0.9, "Essential for invoice creation workflow", "Creating new invoices for clients"),
        ("invoice_add_item", 0.8, "Adds billable work to a draft invoice", "Recording hours against an invoice"),
        ("invoice_list", 0.7, "Gives an overview of existing invoices", "Reviewing outstanding and paid invoices"),
        ("generate_html", 0.6, "Produces the client-facing document", "Sending a finished invoice to a client"),
    ),
    "client_management": (
        ("client_create", 0.8, "Essential for client management workflow", "Managing client information and contacts"),
        ("client_list", 0.7, "Finds existing clients before creating duplicates", "Looking up client records"),
        ("client_update", 0.6, "Keeps contact details current", "Updating client contact information"),
    ),
    "data_import": (
        ("import_validate", 0.8, "Catches malformed rows before anything is written", "Checking a timesheet CSV"),
        ("import_preview", 0.7, "Shows the invoice items an import would create", "Previewing an import"),
        ("import_csv", 0.7, "Loads timesheet data into invoices", "Importing tracked hours"),
    ),
    "data_export": (
        ("generate_html", 0.8, "Renders invoices for presentation and printing", "Producing invoice documents"),
        ("export_data", 0.7, "Exports data for accounting systems", "Moving data into spreadsheets"),
        ("generate_summary", 0.6, "Summarises revenue for a period", "Preparing business reports"),
    ),
    "configuration": (
        ("config_validate", 0.8, "Verifies the configuration is usable", "Checking setup before invoicing"),
        ("config_show", 0.7, "Displays the active settings", "Troubleshooting configuration"),
        ("config_init", 0.6, "Creates a configuration from a template", "First-time setup"),
    ),
    "general": (),
}


def is_fuzzy_match(token: str, other: str) -> bool:
    if len(token) < 3 or len(other) < 3:
        return False
    if token in other or other in token:
        return True
    return (
        len(token) >= FUZZY_PREFIX_MIN_TOKEN
        and len(other) >= FUZZY_PREFIX_MIN_TOKEN
        and token[:FUZZY_PREFIX_LENGTH] == other[:FUZZY_PREFIX_LENGTH]
    )


def workflow_for_context(context: str) -> str:
    context_lc = context.lower()
    for workflow, keywords in _WORKFLOW_KEYWORDS:
        if any(keyword in context_lc for keyword in keywords):
            return workflow
    return "general"


class _Match:
    __slots__ = ("capability", "score", "context", "fields", "category_match")

    def __init__(
        self,
        capability: Capability,
        score: float,
        context: str,
        fields: list[str],
        category_match: bool = False,
    ) -> None:
        self.capability = capability
        self.score = score
        self.context = context
        self.fields = fields
        self.category_match = category_match

    def merge_fields(self, fields: tuple[str, ...]) -> None:
        for field in fields:
            if field not in self.fields:
                self.fields.append(field)

    def to_result(self) -> SearchResult:
        return SearchResult(
            tool=self.capability.model_copy(deep=True),
            relevance_score=self.score,
            match_context=self.context,
            matched_fields=list(self.fields),
            category_match=self.category_match,
        )


class DiscoveryEngine:
    """Search and browse over a snapshot of the registry.

    The index is built once from ``registry.list_capabilities()``. Later
    registrations are invisible until ``rebuild()`` is called.
    """

    def __init__(
        self,
        registry: CapabilityRegistry | None,
        logger: logging.Logger | None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        raise_if_cancelled(cancel)
        if registry is None:
            raise PreconditionError("registry cannot be None")
        if logger is None:
            raise PreconditionError("logger cannot be None")
        self._registry = registry
        self._logger = logger
        self._index = SearchIndex()
        self.last_build_seconds = 0.0
        self.rebuild()
        self._logger.info("discovery engine initialized capabilities=%d", len(self._index))

    @property
    def index(self) -> SearchIndex:
        return self._index

    def rebuild(self, *, cancel: threading.Event | None = None) -> None:
        raise_if_cancelled(cancel)
        start = time.monotonic()
        snapshot = self._registry.list_capabilities()
        index = SearchIndex.build(snapshot)
        self._index = index
        self.last_build_seconds = time.monotonic() - start
        self._logger.debug(
            "search index built capabilities=%d name_tokens=%d description_tokens=%d full_text_tokens=%d",
            len(index),
            len(index.by_name_token),
            len(index.by_description_token),
            len(index.full_text),
        )

    def search(
        self,
        criteria: SearchCriteria | None,
        *,
        cancel: threading.Event | None = None,
    ) -> list[SearchResult]:
        raise_if_cancelled(cancel)
        if criteria is None:
            raise PreconditionError("search criteria cannot be None")

        index = self._index
        query = criteria.query.strip()
        self._logger.debug(
            "starting capability search query=%r categories=%d max_results=%d",
            query,
            len(criteria.categories),
            criteria.max_results,
        )

        if not query and criteria.categories:
            matches = self._search_by_category(index, criteria.categories)
        elif query:
            matches = self._search_by_query(index, query)
        else:
            matches = [_Match(capability, base_relevance(capability), "All tools", []) for capability in index.capabilities]

        matches = self._filter(matches, criteria)
        matches = self._sort(matches, criteria)
        if criteria.max_results > 0:
            matches = matches[: criteria.max_results]

        self._logger.debug("capability search completed query=%r results=%d", query, len(matches))
        return [match.to_result() for match in matches]

    def discover_by_category(
        self,
        category: Category | str = "",
        *,
        cancel: threading.Event | None = None,
    ) -> CategoryDiscoveryResult:
        raise_if_cancelled(cancel)
        index = self._index

        if not category:
            populated = sorted(index.by_category, key=lambda item: item.value)
            tools = [tool for item in populated for tool in index.by_category[item]]
            self._logger.debug("category overview completed categories=%d tools=%d", len(populated), len(tools))
            return CategoryDiscoveryResult(
                category=None,
                tool_count=len(tools),
                tools=_copies(tools),
                related_categories=list(Category),
                recommended_tools=_copies(tools[:OVERVIEW_RECOMMENDED_TOOLS]),
            )

        parsed = Category.parse(category)
        if parsed is None:
            raise UnknownCategoryError(category)

        tools = index.by_category.get(parsed, [])
        related = [item for item in Category if item != parsed]
        self._logger.debug(
            "category discovery completed category=%s tools=%d related=%d",
            parsed.value,
            len(tools),
            len(related),
        )
        return CategoryDiscoveryResult(
            category=parsed,
            tool_count=len(tools),
            tools=_copies(tools),
            related_categories=related,
            recommended_tools=_copies(tools[:CATEGORY_RECOMMENDED_TOOLS]),
        )

    def recommend(
        self,
        context: str,
        limit: int = DEFAULT_RECOMMENDATION_LIMIT,
        *,
        cancel: threading.Event | None = None,
    ) -> list[ToolRecommendation]:
        raise_if_cancelled(cancel)
        if limit <= 0:
            limit = DEFAULT_RECOMMENDATION_LIMIT

        workflow = workflow_for_context(context)
        recommendations: list[ToolRecommendation] = []
        for tool_name, confidence, rationale, use_case in _WORKFLOW_RECOMMENDATIONS[workflow]:
            tool = self._index.get(tool_name)
            if tool is None:
                continue
            recommendations.append(
                ToolRecommendation(
                    tool_name=tool_name,
                    tool=tool.model_copy(deep=True),
                    confidence=confidence,
                    rationale=rationale,
                    use_case=use_case,
                )
            )
            if len(recommendations) == limit:
                break

        self._logger.debug(
            "tool recommendations generated workflow=%s count=%d limit=%d",
            workflow,
            len(recommendations),
            limit,
        )
        return recommendations

    @staticmethod
    def _search_by_category(index: SearchIndex, categories: list[Category]) -> list[_Match]:
        matches: list[_Match] = []
        for category in dict.fromkeys(categories):
            for capability in index.by_category.get(category, []):
                matches.append(
                    _Match(
                        capability,
                        CATEGORY_MATCH_RELEVANCE,
                        f"Category match: {category.value}",
                        ["category"],
                        category_match=True,
                    )
                )
        return matches

    @staticmethod
    def _search_by_query(index: SearchIndex, query: str) -> list[_Match]:
        matches: dict[str, _Match] = {}

        for token in tokenize(query):
            for entry in index.full_text.get(token, []):
                existing = matches.get(entry.capability.name)
                if existing is not None:
                    existing.score += EXACT_REPEAT_BOOST
                    existing.merge_fields(entry.matched_fields)
                else:
                    matches[entry.capability.name] = _Match(
                        entry.capability,
                        entry.relevance + EXACT_MATCH_BOOST,
                        entry.match_context,
                        list(entry.matched_fields),
                    )

            for indexed_token, entries in index.full_text.items():
                if not is_fuzzy_match(token, indexed_token):
                    continue
                for entry in entries:
                    existing = matches.get(entry.capability.name)
                    if existing is not None:
                        existing.score += FUZZY_REPEAT_BOOST
                    else:
                        matches[entry.capability.name] = _Match(
                            entry.capability,
                            entry.relevance + FUZZY_MATCH_BOOST,
                            f"Fuzzy match: {token} ~ {indexed_token}",
                            list(entry.matched_fields),
                        )

        return list(matches.values())

    @staticmethod
    def _filter(matches: list[_Match], criteria: SearchCriteria) -> list[_Match]:
        wanted = set(criteria.categories)
        kept: list[_Match] = []
        for match in matches:
            if match.score < criteria.min_relevance_score:
                continue
            if wanted and not match.category_match and match.capability.category not in wanted:
                continue
            kept.append(match)
        return kept

    @staticmethod
    def _sort(matches: list[_Match], criteria: SearchCriteria) -> list[_Match]:
        descending = criteria.sort_order == "desc"
        if criteria.sort_by == "name":
            return sorted(matches, key=lambda match: match.capability.name, reverse=descending)
        if criteria.sort_by == "category":
            return sorted(
                matches,
                key=lambda match: (match.capability.category.value, match.capability.name),
                reverse=descending,
            )
        if criteria.sort_order == "asc":
            return sorted(matches, key=lambda match: (match.score, match.capability.name))
        return sorted(matches, key=lambda match: (-match.score, match.capability.name))


def _copies(capabilities: list[Capability]) -> list[Capability]:
    return [capability.model_copy(deep=True) for capability in capabilities]
