import asyncio
import json
import logging
import signal
from typing import Any

from dotenv import load_dotenv
from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from bootstrap import CatalogComponents, CatalogInitializer, IntegrityExpectations
from capabilities import Capability, CapabilityNotFoundError, Category, ValidationError, load_manifest
from capabilities.errors import CatalogError, UnknownCategoryError
from config import CatalogConfig
from discovery import CategoryDiscoveryResult, CategorySummary, SearchCriteria, SearchResult, ToolRecommendation

logger = logging.getLogger(__name__)

load_dotenv()

MAX_SEARCH_LIMIT = 50
DEFAULT_TOOL_RECOMMENDATIONS = 5
DEFAULT_CATEGORY_RECOMMENDATIONS = 3

TOOL_DESCRIPTIONS = {
    "search_capabilities": (
        "Search registered capabilities by free text and/or categories. "
        "Results are ranked by relevance and include the matched fields."
    ),
    "read_capability": "Read the full definition of a capability by name, including its input schema and examples.",
    "validate_capability_input": "Check arguments against a capability's input schema without running it.",
    "discover_category": "List the capabilities in a category, or give an overview of all categories when empty.",
    "recommend_tools": "Recommend capabilities for a described workflow, with confidence and rationale.",
    "recommend_categories": "Rank categories against a free-text request.",
    "describe_category": "Describe a category in prose: use cases, prerequisites, example tools and related categories.",
}


class CapabilityCatalogServer:
    def __init__(self, config: CatalogConfig, components: CatalogComponents | None = None) -> None:
        self.config = config
        self.server = FastMCP()
        self._shutdown_requested = False
        self.initializer = CatalogInitializer(logger)
        self.components = components or self._setup_catalog()

    def _setup_catalog(self) -> CatalogComponents:
        manifest = load_manifest(self.config.manifest_path)
        return self.initializer.initialize(
            manifest.groups,
            IntegrityExpectations.from_manifest(manifest.expected),
        )

    def signal_handler(self, sig: int, frame: Any = None) -> None:
        """Handle termination signals for graceful shutdown."""
        logger.info("Received signal %s, initiating graceful shutdown...", sig)
        self._shutdown_requested = True

    async def search_capabilities(
        self,
        query: str = "",
        categories: list[str] | None = None,
        limit: int = 0,
        min_relevance: float = 0.0,
        sort_by: str = "relevance",
        sort_order: str = "",
        include_examples: bool = False,
    ) -> str:
        title = "Capability Search Results"
        if self._shutdown_requested:
            logger.info("Shutdown in progress, declining new capability search requests")
            return self._format_shutdown_markdown(title)

        unknown = [category for category in categories or [] if not Category.is_known(category)]
        if unknown:
            return self._format_error_markdown(title, UnknownCategoryError(", ".join(unknown)))

        normalized_limit = min(max(1, limit or self.config.search_limit), MAX_SEARCH_LIMIT)
        criteria = SearchCriteria(
            query=query,
            categories=[Category(category) for category in categories or []],
            max_results=normalized_limit,
            min_relevance_score=min_relevance,
            sort_by=sort_by,
            sort_order=sort_order,
            include_examples=include_examples,
        )
        try:
            results = await asyncio.to_thread(self.components.discovery.search, criteria)
            return self._format_search_results_markdown(criteria, results)
        except CatalogError as exc:
            return self._format_error_markdown(title, exc)
        except Exception as exc:
            logger.error("search_capabilities failed: %s", exc)
            return f"## {title}\n\nError: `{exc}`"

    async def read_capability(self, name: str) -> str:
        title = f"Capability: `{name}`"
        if self._shutdown_requested:
            return self._format_shutdown_markdown(title)

        try:
            capability = await asyncio.to_thread(self.components.registry.get, name)
            return self._format_capability_markdown(capability)
        except CatalogError as exc:
            return self._format_error_markdown(title, exc)
        except Exception as exc:
            logger.error("read_capability failed: %s", exc)
            return f"## {title}\n\nError: `{exc}`"

    async def validate_capability_input(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        title = f"Input Validation: `{name}`"
        if self._shutdown_requested:
            return self._format_shutdown_markdown(title)

        try:
            await asyncio.to_thread(self.components.registry.validate_input, name, arguments or {})
            return "\n".join([f"## {title}", "", "- Status: `valid`"])
        except ValidationError as exc:
            return self._format_validation_error_markdown(title, exc)
        except CatalogError as exc:
            return self._format_error_markdown(title, exc)
        except Exception as exc:
            logger.error("validate_capability_input failed: %s", exc)
            return f"## {title}\n\nError: `{exc}`"

    async def discover_category(self, category: str = "") -> str:
        title = "Category Discovery"
        if self._shutdown_requested:
            return self._format_shutdown_markdown(title)

        try:
            result = await asyncio.to_thread(self.components.discovery.discover_by_category, category)
            return self._format_category_discovery_markdown(result)
        except CatalogError as exc:
            return self._format_error_markdown(title, exc)
        except Exception as exc:
            logger.error("discover_category failed: %s", exc)
            return f"## {title}\n\nError: `{exc}`"

    async def recommend_tools(self, context: str, limit: int = DEFAULT_TOOL_RECOMMENDATIONS) -> str:
        title = "Tool Recommendations"
        if self._shutdown_requested:
            return self._format_shutdown_markdown(title)

        try:
            recommendations = await asyncio.to_thread(self.components.discovery.recommend, context, limit)
            return self._format_tool_recommendations_markdown(context, recommendations)
        except CatalogError as exc:
            return self._format_error_markdown(title, exc)
        except Exception as exc:
            logger.error("recommend_tools failed: %s", exc)
            return f"## {title}\n\nError: `{exc}`"

    async def recommend_categories(self, query: str, max_results: int = DEFAULT_CATEGORY_RECOMMENDATIONS) -> str:
        title = "Category Recommendations"
        if self._shutdown_requested:
            return self._format_shutdown_markdown(title)

        try:
            summaries = await asyncio.to_thread(self.components.categories.recommend, query, max_results)
            return self._format_category_summaries_markdown(title, query, summaries)
        except CatalogError as exc:
            return self._format_error_markdown(title, exc)
        except Exception as exc:
            logger.error("recommend_categories failed: %s", exc)
            return f"## {title}\n\nError: `{exc}`"

    async def describe_category(self, category: str, include_tools: bool = True) -> str:
        title = f"Category: `{category}`"
        if self._shutdown_requested:
            return self._format_shutdown_markdown(title)

        try:
            description = await asyncio.to_thread(self.components.categories.describe, category, include_tools)
            return "\n".join([f"## {title}", "", description])
        except CatalogError as exc:
            return self._format_error_markdown(title, exc)
        except Exception as exc:
            logger.error("describe_category failed: %s", exc)
            return f"## {title}\n\nError: `{exc}`"

    @staticmethod
    def _format_shutdown_markdown(title: str) -> str:
        return f"## {title}\n\nServer is shutting down."

    @staticmethod
    def _format_error_markdown(title: str, exc: Exception) -> str:
        lines = [f"## {title}", "", f"Error: `{exc}`"]
        if isinstance(exc, CapabilityNotFoundError) and exc.suggestions:
            lines.extend(["", "Did you mean:"])
            lines.extend([f"- `{suggestion}`" for suggestion in exc.suggestions])
        if isinstance(exc, UnknownCategoryError):
            lines.extend(["", "Known categories:"])
            lines.extend([f"- `{category.value}`" for category in Category])
        return "\n".join(lines)

    @staticmethod
    def _format_validation_error_markdown(title: str, exc: ValidationError) -> str:
        detail = exc.to_dict()
        lines = [
            f"## {title}",
            "",
            "- Status: `invalid`",
            f"- Field: `{detail['field'] or '(root)'}`",
            f"- Code: `{detail['code']}`",
            f"- Message: {detail['message']}",
        ]
        if detail["suggestions"]:
            lines.extend(["", "### Suggestions"])
            lines.extend([f"- {suggestion}" for suggestion in detail["suggestions"]])
        return "\n".join(lines)

    @staticmethod
    def _format_search_results_markdown(criteria: SearchCriteria, results: list[SearchResult]) -> str:
        lines = ["## Capability Search Results", "", f"- Query: `{criteria.query}`"]
        if criteria.categories:
            lines.append(f"- Categories: `{', '.join(category.value for category in criteria.categories)}`")
        lines.extend([f"- Hits: `{len(results)}`", ""])
        if not results:
            lines.extend(
                [
                    "No capabilities matched.",
                    "",
                    "Try a broader query:",
                    "- Use one or two keywords such as `invoice`, `client` or `import`.",
                    "- Browse a category with `discover_category` instead.",
                ]
            )
            return "\n".join(lines)

        for index, result in enumerate(results, start=1):
            tool = result.tool
            required = ", ".join(tool.required_fields()) or "(none)"
            matched = ", ".join(result.matched_fields) or "(none)"
            lines.extend(
                [
                    f"### {index}. `{tool.name}`",
                    f"- Category: `{tool.category.value}`",
                    f"- Relevance: `{result.relevance_score:.2f}`",
                    f"- Match: {result.match_context}",
                    f"- Matched fields: `{matched}`",
                    f"- Summary: {tool.description}",
                    f"- Required args: `{required}`",
                ]
            )
            if criteria.include_examples:
                for example in tool.examples:
                    lines.append(f"- Example: {example.description} `{json.dumps(example.input, sort_keys=True)}`")
            lines.append("")
        return "\n".join(lines).rstrip()

    @staticmethod
    def _format_capability_markdown(capability: Capability) -> str:
        invocation = " ".join([capability.invocation.command, *capability.invocation.args])
        lines = [
            f"## Capability: `{capability.name}`",
            "",
            f"- Category: `{capability.category.value}`",
            f"- Version: `{capability.version}`",
            f"- Timeout (s): `{int(capability.timeout.total_seconds())}`",
            f"- Invocation: `{invocation}`",
            "",
            "### Description",
            capability.description,
            "",
        ]
        if capability.help_text:
            lines.extend(["### Help", capability.help_text, ""])

        lines.extend(
            [
                "### Input Schema",
                "```json",
                json.dumps(capability.input_schema, indent=2, sort_keys=True, ensure_ascii=True),
                "```",
                "",
                "### Examples",
            ]
        )
        if not capability.examples:
            lines.append("- (none)")
        for example in capability.examples:
            lines.append(f"- {example.description}")
            if example.use_case:
                lines.append(f"  - Use case: {example.use_case}")
            lines.append(f"  - Input: `{json.dumps(example.input, sort_keys=True, ensure_ascii=True)}`")
            if example.expected_output:
                lines.append(f"  - Expected output: {example.expected_output}")
        return "\n".join(lines)

    @staticmethod
    def _format_category_discovery_markdown(result: CategoryDiscoveryResult) -> str:
        heading = f"`{result.category.value}`" if result.category else "all categories"
        lines = [
            f"## Category Discovery: {heading}",
            "",
            f"- Tools: `{result.tool_count}`",
            f"- Related categories: `{', '.join(category.value for category in result.related_categories)}`",
            "",
            "### Tools",
        ]
        if not result.tools:
            lines.append("- (none)")
        lines.extend([f"- `{tool.name}`: {tool.description}" for tool in result.tools])
        if result.recommended_tools:
            lines.extend(["", "### Start With"])
            lines.extend([f"- `{tool.name}`" for tool in result.recommended_tools])
        return "\n".join(lines)

    @staticmethod
    def _format_tool_recommendations_markdown(context: str, recommendations: list[ToolRecommendation]) -> str:
        lines = ["## Tool Recommendations", "", f"- Context: `{context}`", f"- Recommendations: `{len(recommendations)}`", ""]
        if not recommendations:
            lines.append("No workflow matched. Use `search_capabilities` with a keyword instead.")
            return "\n".join(lines)

        for index, recommendation in enumerate(recommendations, start=1):
            lines.extend(
                [
                    f"### {index}. `{recommendation.tool_name}`",
                    f"- Confidence: `{recommendation.confidence:.1f}`",
                    f"- Rationale: {recommendation.rationale}",
                    f"- Use case: {recommendation.use_case}",
                    "",
                ]
            )
        return "\n".join(lines).rstrip()

    @staticmethod
    def _format_category_summaries_markdown(title: str, query: str, summaries: list[CategorySummary]) -> str:
        lines = [f"## {title}", "", f"- Query: `{query}`", f"- Categories: `{len(summaries)}`", ""]
        if not summaries:
            lines.append("No categories matched.")
            return "\n".join(lines)

        for index, summary in enumerate(summaries, start=1):
            popular = ", ".join(summary.popular_tools) or "(none)"
            lines.extend(
                [
                    f"### {index}. {summary.metadata.name} (`{summary.category.value}`)",
                    f"- Score: `{summary.recommendation_score:.1f}`",
                    f"- Tools: `{summary.tool_count}`",
                    f"- Popular tools: `{popular}`",
                    f"- {summary.metadata.description}",
                    "",
                ]
            )
        return "\n".join(lines).rstrip()

    def _register_tools(self) -> None:
        tools = [
            (self.search_capabilities, "search_capabilities"),
            (self.read_capability, "read_capability"),
            (self.validate_capability_input, "validate_capability_input"),
            (self.discover_category, "discover_category"),
            (self.recommend_tools, "recommend_tools"),
            (self.recommend_categories, "recommend_categories"),
            (self.describe_category, "describe_category"),
        ]

        for tool_func, tool_name in tools:
            self.server.tool(tool_func, name=tool_name, description=TOOL_DESCRIPTIONS[tool_name])
            logger.info("Registered tool: %s", tool_name)

    def _register_health_endpoints(self) -> None:
        @self.server.custom_route("/health", methods=["GET"])
        async def health_check(request: Request) -> Response:
            return JSONResponse({"status": "ok", "service": "capability-catalog"})

        @self.server.custom_route("/ready", methods=["GET"])
        async def readiness_check(request: Request) -> Response:
            return self._readiness_response()

    def _readiness_response(self) -> JSONResponse:
        try:
            if self._shutdown_requested:
                return JSONResponse({"status": "not_ready", "reason": "shutting_down"}, status_code=503)

            if self.components is None:
                return JSONResponse({"status": "not_ready", "reason": "catalog_unavailable"}, status_code=503)

            metrics = self.components.metrics
            return JSONResponse(
                {
                    "status": "ready",
                    "service": "capability-catalog",
                    "tools": metrics.tools_registered,
                    "categories": metrics.categories_active,
                }
            )
        except Exception as exc:
            logger.error("Readiness check failed: %s", exc)
            return JSONResponse({"status": "error", "reason": str(exc)}, status_code=503)

    async def _run_server(self) -> None:
        tasks = [
            self.server.run_http_async(
                transport="streamable-http",
                host="0.0.0.0",
                path="/catalog/mcp",
                port=self.config.streamable_http_port,
            ),
            self.server.run_http_async(
                transport="sse",
                host="0.0.0.0",
                path="/catalog/sse",
                port=self.config.sse_port,
            ),
        ]
        await asyncio.gather(*tasks)

    async def run(self) -> None:
        signal.signal(signal.SIGINT, lambda sig, frame: self.signal_handler(sig, frame))
        signal.signal(signal.SIGTERM, lambda sig, frame: self.signal_handler(sig, frame))

        self._register_tools()
        self._register_health_endpoints()

        try:
            logger.info("Starting capability catalog server...")
            await self._run_server()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt (CTRL+C)")
        except Exception as exc:
            logger.error("Server error: %s", exc)
            raise
        finally:
            logger.info("Server has shut down.")


def main() -> None:
    config = CatalogConfig()
    logging.basicConfig(level=config.log_level)
    server = CapabilityCatalogServer(config)
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
