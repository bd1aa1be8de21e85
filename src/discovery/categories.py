import logging
import threading

from capabilities.errors import PreconditionError, UnknownCategoryError, raise_if_cancelled
from capabilities.models import Capability, Category
from capabilities.registry import CapabilityRegistry

from .models import CategoryFilter, CategoryMetadata, CategorySummary

DEFAULT_MAX_CATEGORIES = 10
DEFAULT_MAX_RECOMMENDATIONS = 3
POPULAR_TOOLS = 3
DESCRIBED_TOOLS = 3
MAX_TOOL_SCORE = 5.0
TOOL_SCORE_WEIGHT = 0.5

NAME_MATCH_SCORE = 10.0
KEYWORD_MATCH_SCORE = 5.0
DESCRIPTION_MATCH_SCORE = 3.0
USE_CASE_MATCH_SCORE = 3.0

_STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "a", "an", "is", "are", "was", "were", "be", "been", "have", "has", "had", "do",
        "does", "did", "will", "would", "could", "should", "i", "you", "he", "she", "it",
        "we", "they", "me", "him", "her", "us", "them", "my", "your", "his", "its", "our",
        "their",
    }
)

_CATEGORY_METADATA: dict[Category, CategoryMetadata] = {
    Category.INVOICE_MANAGEMENT: CategoryMetadata(
        name="Invoice Management",
        description="Tools for creating, updating, and managing invoices throughout their lifecycle",
        keywords=["invoice", "create", "update", "manage", "billing", "payment", "due date", "client"],
        use_cases=[
            "Creating new invoices for clients",
            "Updating invoice details and metadata",
            "Managing invoice status and payments",
            "Setting due dates and payment terms",
        ],
        related_categories=[Category.CLIENT_MANAGEMENT, Category.DATA_EXPORT, Category.REPORTING],
        priority=1,
    ),
    Category.DATA_IMPORT: CategoryMetadata(
        name="Data Import",
        description="Tools for importing timesheet data, client information, and other external data",
        keywords=["import", "csv", "timesheet", "data", "upload", "file", "spreadsheet", "hours"],
        use_cases=[
            "Importing timesheet data from CSV files",
            "Loading client information from external sources",
            "Bulk importing work hours and billing data",
            "Converting spreadsheet data to invoice items",
        ],
        prerequisites=["CSV files formatted correctly", "File paths accessible"],
        related_categories=[Category.INVOICE_MANAGEMENT, Category.CLIENT_MANAGEMENT],
        priority=2,
    ),
    Category.DATA_EXPORT: CategoryMetadata(
        name="Data Export",
        description="Tools for generating and exporting invoice documents, reports, and data",
        keywords=["export", "generate", "html", "pdf", "report", "document", "download", "template"],
        use_cases=[
            "Generating HTML invoices for clients",
            "Creating PDF documents for printing",
            "Exporting invoice data for accounting systems",
            "Generating reports for analysis",
        ],
        related_categories=[Category.INVOICE_MANAGEMENT, Category.REPORTING],
        priority=2,
    ),
    Category.CLIENT_MANAGEMENT: CategoryMetadata(
        name="Client Management",
        description="Tools for managing client information, contacts, and relationships",
        keywords=["client", "customer", "contact", "company", "address", "email", "phone", "manage"],
        use_cases=[
            "Adding new clients to the system",
            "Updating client contact information",
            "Managing client billing preferences",
            "Organizing client relationships",
        ],
        related_categories=[Category.INVOICE_MANAGEMENT, Category.DATA_IMPORT],
        priority=3,
    ),
    Category.CONFIGURATION: CategoryMetadata(
        name="Configuration",
        description="Tools for system configuration, settings management, and validation",
        keywords=["config", "settings", "setup", "validate", "preferences", "options", "system"],
        use_cases=[
            "Configuring invoice templates and formats",
            "Setting up payment terms and tax rates",
            "Validating system configuration",
            "Managing user preferences",
        ],
        prerequisites=["Administrative access", "Understanding of invoice requirements"],
        related_categories=[Category.INVOICE_MANAGEMENT],
        priority=4,
    ),
    Category.REPORTING: CategoryMetadata(
        name="Reporting",
        description="Tools for analytics, reporting, and business intelligence on invoice data",
        keywords=["report", "analytics", "statistics", "summary", "analysis", "metrics", "dashboard"],
        use_cases=[
            "Generating revenue reports and summaries",
            "Analyzing invoice patterns and trends",
            "Creating client billing summaries",
            "Tracking payment status and overdue amounts",
        ],
        related_categories=[Category.INVOICE_MANAGEMENT, Category.DATA_EXPORT],
        priority=5,
    ),
}


def extract_keywords(query: str) -> list[str]:
    """Split a free-text query into lowercase words, dropping stop words and words under three characters."""
    return [word for word in query.lower().split() if word not in _STOP_WORDS and len(word) >= 3]


def recommendation_score(metadata: CategoryMetadata, tool_count: int) -> float:
    return (10 - metadata.priority) + min(tool_count * TOOL_SCORE_WEIGHT, MAX_TOOL_SCORE)


def query_relevance(query: str, metadata: CategoryMetadata) -> float:
    if not query:
        return recommendation_score(metadata, 0)

    query_lc = query.lower()
    score = 0.0
    if query_lc in metadata.name.lower():
        score += NAME_MATCH_SCORE
    score += KEYWORD_MATCH_SCORE * sum(1 for keyword in metadata.keywords if query_lc in keyword.lower())
    if query_lc in metadata.description.lower():
        score += DESCRIPTION_MATCH_SCORE
    score += USE_CASE_MATCH_SCORE * sum(1 for use_case in metadata.use_cases if query_lc in use_case.lower())
    return score + recommendation_score(metadata, 0)


def _matches_keywords(metadata: CategoryMetadata, keywords: list[str]) -> bool:
    haystacks = [metadata.name, metadata.description, *metadata.keywords, *metadata.use_cases]
    haystacks = [text.lower() for text in haystacks]
    return any(keyword.lower() in text for keyword in keywords for text in haystacks)


def _matches_use_cases(metadata: CategoryMetadata, use_cases: list[str]) -> bool:
    return any(
        wanted.lower() in use_case.lower() for wanted in use_cases for use_case in metadata.use_cases
    )


class CategoryManager:
    """Static category metadata combined with live tool counts from the registry."""

    def __init__(self, registry: CapabilityRegistry | None, logger: logging.Logger | None) -> None:
        if registry is None:
            raise PreconditionError("registry cannot be None")
        if logger is None:
            raise PreconditionError("logger cannot be None")
        self._registry = registry
        self._logger = logger
        self._metadata = {category: metadata.model_copy(deep=True) for category, metadata in _CATEGORY_METADATA.items()}

    def get_metadata(
        self,
        category: Category | str,
        *,
        cancel: threading.Event | None = None,
    ) -> CategoryMetadata | None:
        raise_if_cancelled(cancel)
        parsed = Category.parse(category)
        metadata = self._metadata.get(parsed) if parsed is not None else None
        if metadata is None:
            self._logger.debug("category metadata not found category=%s", category)
            return None
        self._logger.debug("category metadata retrieved category=%s name=%s", parsed.value, metadata.name)
        return metadata.model_copy(deep=True)

    def discover(
        self,
        filter: CategoryFilter | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> list[CategorySummary]:
        raise_if_cancelled(cancel)
        if filter is None:
            filter = CategoryFilter(include_empty=False, max_results=DEFAULT_MAX_CATEGORIES, sort_by="priority")

        self._logger.debug(
            "starting category discovery keywords=%s use_cases=%s max_results=%d",
            filter.keywords,
            filter.use_cases,
            filter.max_results,
        )

        summaries: list[CategorySummary] = []
        for category, metadata in self._metadata.items():
            if filter.keywords and not _matches_keywords(metadata, filter.keywords):
                continue
            if filter.use_cases and not _matches_use_cases(metadata, filter.use_cases):
                continue

            tools = self._registry.list_capabilities(category)
            if not tools and not filter.include_empty:
                continue

            summaries.append(
                CategorySummary(
                    category=category,
                    metadata=metadata.model_copy(deep=True),
                    tool_count=len(tools),
                    popular_tools=[tool.name for tool in tools[:POPULAR_TOOLS]],
                    recommendation_score=recommendation_score(metadata, len(tools)),
                )
            )

        summaries = _sort_summaries(summaries, filter.sort_by)
        if filter.max_results > 0:
            summaries = summaries[: filter.max_results]

        self._logger.debug("category discovery completed matching_categories=%d", len(summaries))
        return summaries

    def recommend(
        self,
        query: str,
        max_results: int = DEFAULT_MAX_RECOMMENDATIONS,
        *,
        cancel: threading.Event | None = None,
    ) -> list[CategorySummary]:
        raise_if_cancelled(cancel)
        if max_results <= 0:
            max_results = DEFAULT_MAX_RECOMMENDATIONS

        category_filter = CategoryFilter(keywords=extract_keywords(query), include_empty=False, sort_by="relevance")
        summaries = self.discover(category_filter)
        for summary in summaries:
            summary.recommendation_score = query_relevance(query, summary.metadata)

        summaries = _sort_summaries(summaries, "relevance")[:max_results]
        self._logger.debug(
            "category recommendations generated count=%d top_category=%s",
            len(summaries),
            summaries[0].category.value if summaries else "none",
        )
        return summaries

    def describe(
        self,
        category: Category | str,
        include_tools: bool = True,
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        raise_if_cancelled(cancel)
        metadata = self.get_metadata(category)
        if metadata is None:
            raise UnknownCategoryError(category)

        parts = [f"**{metadata.name}**: {metadata.description}"]
        if metadata.use_cases:
            parts.append("Common use cases include:\n" + _bullets(metadata.use_cases))
        if metadata.prerequisites:
            parts.append("Prerequisites:\n" + _bullets(metadata.prerequisites))

        if include_tools:
            tools = self._registry.list_capabilities(Category.parse(category))
            if tools:
                parts.append("Available tools:\n" + _describe_tools(tools))

        if metadata.related_categories:
            related = [self._metadata[item].name for item in metadata.related_categories if item in self._metadata]
            parts.append("Related categories: " + ", ".join(related))

        description = "\n\n".join(parts)
        self._logger.debug(
            "category description generated category=%s include_tools=%s length=%d",
            category,
            include_tools,
            len(description),
        )
        return description


def _bullets(lines: list[str]) -> str:
    return "\n".join(f"- {line}" for line in lines)


def _describe_tools(tools: list[Capability]) -> str:
    lines = [f"- **{tool.name}**: {tool.description}" for tool in tools[:DESCRIBED_TOOLS]]
    remaining = len(tools) - DESCRIBED_TOOLS
    if remaining > 0:
        lines.append(f"- ...and {remaining} more tools")
    return "\n".join(lines)


def _sort_summaries(summaries: list[CategorySummary], sort_by: str) -> list[CategorySummary]:
    if sort_by == "priority":
        return sorted(summaries, key=lambda item: (item.metadata.priority, item.metadata.name))
    if sort_by == "toolCount":
        return sorted(summaries, key=lambda item: (-item.tool_count, item.metadata.name))
    if sort_by == "name":
        return sorted(summaries, key=lambda item: item.metadata.name)
    return sorted(summaries, key=lambda item: (-item.recommendation_score, item.metadata.name))
