import re
from collections.abc import Iterable
from typing import NamedTuple

from capabilities.models import Capability, Category

_SEPARATOR_RE = re.compile(r"[\s_\-.,]+")
MIN_TOKEN_LENGTH = 3

BASE_RELEVANCE = 0.5
EXAMPLES_BONUS = 0.1
HELP_TEXT_BONUS = 0.1
LONG_DESCRIPTION_BONUS = 0.1
LONG_DESCRIPTION_CHARS = 50


def tokenize(text: str) -> list[str]:
    """Lowercase and split on whitespace, underscores, hyphens, periods and commas.

    Tokens shorter than three characters are dropped; order and duplicates are kept.
    """
    return [token for token in _SEPARATOR_RE.split(text.lower()) if len(token) >= MIN_TOKEN_LENGTH]


def base_relevance(capability: Capability) -> float:
    score = BASE_RELEVANCE
    if capability.examples:
        score += EXAMPLES_BONUS
    if capability.help_text:
        score += HELP_TEXT_BONUS
    if len(capability.description) > LONG_DESCRIPTION_CHARS:
        score += LONG_DESCRIPTION_BONUS
    return score


class IndexEntry(NamedTuple):
    capability: Capability
    relevance: float
    match_context: str
    matched_fields: tuple[str, ...]


class SearchIndex:
    """Read-only token maps derived from one registry snapshot."""

    def __init__(self) -> None:
        self.capabilities: list[Capability] = []
        self.by_name_token: dict[str, list[Capability]] = {}
        self.by_description_token: dict[str, list[Capability]] = {}
        self.by_category: dict[Category, list[Capability]] = {}
        # Tags are not part of capability definitions yet; kept so criteria can carry them.
        self.by_tag: dict[str, list[Capability]] = {}
        self.full_text: dict[str, list[IndexEntry]] = {}

    @classmethod
    def build(cls, capabilities: Iterable[Capability]) -> "SearchIndex":
        index = cls()
        for capability in capabilities:
            index._add(capability)
        return index

    def __len__(self) -> int:
        return len(self.capabilities)

    def get(self, name: str) -> Capability | None:
        for capability in self.capabilities:
            if capability.name == name:
                return capability
        return None

    def _add(self, capability: Capability) -> None:
        self.capabilities.append(capability)

        name_tokens = tokenize(capability.name)
        description_tokens = tokenize(capability.description)
        help_tokens = tokenize(capability.help_text)

        for token in dict.fromkeys(name_tokens):
            self.by_name_token.setdefault(token, []).append(capability)
        for token in dict.fromkeys(description_tokens):
            self.by_description_token.setdefault(token, []).append(capability)
        self.by_category.setdefault(capability.category, []).append(capability)

        relevance = base_relevance(capability)
        field_tokens = {
            "name": set(name_tokens),
            "description": set(description_tokens),
            "help_text": set(help_tokens),
        }
        all_tokens = tokenize(f"{capability.name} {capability.description} {capability.help_text}")
        for token in dict.fromkeys(all_tokens):
            matched_fields = tuple(field for field, tokens in field_tokens.items() if token in tokens)
            self.full_text.setdefault(token, []).append(
                IndexEntry(
                    capability=capability,
                    relevance=relevance,
                    match_context=f"Matched on: {token}",
                    matched_fields=matched_fields,
                )
            )
