from pydantic import BaseModel, Field

from capabilities.models import Capability, Category


class SearchCriteria(BaseModel):
    query: str = ""
    categories: list[Category] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    include_examples: bool = False
    max_results: int = 0
    min_relevance_score: float = 0.0
    sort_by: str = "relevance"
    sort_order: str = ""


class SearchResult(BaseModel):
    tool: Capability
    relevance_score: float
    match_context: str = ""
    matched_fields: list[str] = Field(default_factory=list)
    category_match: bool = False


class CategoryDiscoveryResult(BaseModel):
    category: Category | None = None
    tool_count: int = 0
    tools: list[Capability] = Field(default_factory=list)
    related_categories: list[Category] = Field(default_factory=list)
    recommended_tools: list[Capability] = Field(default_factory=list)


class ToolRecommendation(BaseModel):
    tool_name: str
    tool: Capability | None = None
    confidence: float
    rationale: str
    use_case: str


class CategoryMetadata(BaseModel):
    name: str
    description: str
    keywords: list[str] = Field(default_factory=list)
    use_cases: list[str] = Field(default_factory=list)
    prerequisites: list[str] = Field(default_factory=list)
    related_categories: list[Category] = Field(default_factory=list)
    priority: int


class CategoryFilter(BaseModel):
    keywords: list[str] = Field(default_factory=list)
    use_cases: list[str] = Field(default_factory=list)
    include_empty: bool = False
    max_results: int = 0
    sort_by: str = "relevance"


class CategorySummary(BaseModel):
    category: Category
    metadata: CategoryMetadata
    tool_count: int = 0
    popular_tools: list[str] = Field(default_factory=list)
    recommendation_score: float = 0.0
