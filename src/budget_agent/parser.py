"""Turn the model's final text into typed results.

The model is asked for bare JSON, but in practice it sometimes wraps the
JSON in a markdown code fence, puts a sentence in front of it, or returns
something that is not JSON at all. The parser is forgiving about all of
that and never raises: a bad answer degrades, it does not crash the run.

- Query answers fall back to ``QueryResult(answer=<raw text>)``.
- Recommendation lists fall back to an empty list.

Both flows keep at most ``MAX_ITEMS`` structured items.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, TypeVar

from langchain_core.utils.json import parse_json_markdown

from budget_agent.models import (
    GeneratedRecommendation,
    QueryResult,
    RecommendationPriority,
    RecommendationType,
    TransactionReference,
)

logger = logging.getLogger(__name__)

MAX_ITEMS = 5
DEFAULT_TYPE = RecommendationType.BEHAVIORAL_INSIGHT
DEFAULT_PRIORITY = RecommendationPriority.MEDIUM

# json.loads raises plain ValueError for oversized integers and
# RecursionError for very deep nesting, not only JSONDecodeError
_PARSE_ERRORS = (ValueError, RecursionError)

E = TypeVar("E", bound=Enum)


def extract_json(text: str) -> str:
    """Trim any prose (or code fence) around the outermost ``{...}`` or ``[...]``."""
    stripped = text.strip()
    starts = [i for i in (stripped.find("{"), stripped.find("[")) if i >= 0]
    if not starts:
        return stripped
    start = min(starts)
    end = stripped.rfind("}" if stripped[start] == "{" else "]")
    if end <= start:
        return stripped
    return stripped[start : end + 1]


def _load(text: str) -> Any:
    # Bare JSON or a fenced block first; strict json.loads so a truncated
    # answer is rejected rather than completed.
    try:
        return parse_json_markdown(text, parser=json.loads)
    except json.JSONDecodeError:
        return json.loads(extract_json(text))


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


# ---------------------------------------------------------------------------
# Query answers
# ---------------------------------------------------------------------------


def parse_query_result(text: str) -> QueryResult:
    """Parse ``{"answer", "amount", "transactions"}`` from the final text."""
    try:
        data = _load(text)
    except _PARSE_ERRORS:
        logger.warning("Failed to parse query response, using raw text: %.500s", text)
        return QueryResult(answer=text.strip())

    if not isinstance(data, dict):
        logger.warning("Query response is not a JSON object: %.500s", text)
        return QueryResult(answer=text.strip())

    answer = data.get("answer")
    if not isinstance(answer, str) or not answer.strip():
        answer = text.strip()

    references: list[TransactionReference] = []
    raw_items = data.get("transactions")
    if isinstance(raw_items, list):
        for item in raw_items:
            if len(references) >= MAX_ITEMS:
                break
            if not isinstance(item, dict):
                continue
            references.append(
                TransactionReference(
                    id=_text(item.get("id")),
                    date=_text(item.get("date")),
                    description=_text(item.get("description")) or "",
                    amount=_number(item.get("amount")),
                    category=_text(item.get("category")),
                    account=_text(item.get("account")),
                )
            )

    return QueryResult(
        answer=answer,
        amount=_number(data.get("amount")),
        transactions=references,
    )


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


def _normalize(value: str) -> str:
    return re.sub(r"[\s_\-]", "", value).lower()


def parse_enum(value: Any, enum_cls: type[E], default: E, field: str) -> E:
    """Match *value* against *enum_cls* by value or name, ignoring case,
    spaces, dashes and underscores. Anything else becomes *default*, with a
    warning so malformed model output stays visible in the logs.
    """
    if isinstance(value, str):
        wanted = _normalize(value)
        for member in enum_cls:
            if wanted in (_normalize(str(member.value)), _normalize(member.name)):
                return member
    logger.warning(
        "Unrecognized recommendation %s %r, defaulting to %s", field, value, default.value
    )
    return default


def parse_recommendations(text: str) -> list[GeneratedRecommendation]:
    """Parse ``{"recommendations": [...]}`` (or a bare list) from the final text."""
    try:
        data = _load(text)
    except _PARSE_ERRORS:
        logger.warning("Failed to parse recommendations from agent output: %.500s", text)
        return []

    raw_items = data.get("recommendations") if isinstance(data, dict) else data
    if not isinstance(raw_items, list):
        logger.warning("Agent output has no recommendations list: %.500s", text)
        return []

    recommendations: list[GeneratedRecommendation] = []
    for item in raw_items:
        if len(recommendations) >= MAX_ITEMS:
            break
        if not isinstance(item, dict):
            continue
        title = _text(item.get("title"))
        message = _text(item.get("message"))
        if not title or not title.strip() or not message or not message.strip():
            logger.warning("Skipping recommendation without title or message: %s", item)
            continue
        recommendations.append(
            GeneratedRecommendation(
                title=title.strip()[:200],
                message=message.strip()[:1000],
                type=parse_enum(item.get("type"), RecommendationType, DEFAULT_TYPE, "type"),
                priority=parse_enum(
                    item.get("priority"), RecommendationPriority, DEFAULT_PRIORITY, "priority"
                ),
            )
        )

    return recommendations
