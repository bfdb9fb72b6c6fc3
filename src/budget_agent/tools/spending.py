"""Category spending aggregation tool.

Data used:
- SpendingAggregator.category_totals(user_id, top_n, include_income)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from budget_agent import config
from budget_agent.context import AgentContext
from budget_agent.ports import SpendingAggregator
from budget_agent.tools.base import (
    ToolDescriptor,
    ToolParameter,
    clamp_int,
    coerce_bool,
)

logger = logging.getLogger(__name__)

NO_CATEGORIES_MESSAGE = "No categorized transactions found."


class GetCategorySpendingTool:
    """Total the caller's spending per category."""

    descriptor = ToolDescriptor(
        name="GetCategorySpending",
        description=(
            "Get spending totals grouped by category. Use this to answer questions "
            "about how much was spent in each category, what the top spending "
            "categories are, or to compare spending across categories. Returns "
            "category names with total amounts."
        ),
        parameters=(
            ToolParameter(
                name="topN",
                type="integer",
                description=(
                    f"Number of top categories to return "
                    f"(default: {config.TOOL_DEFAULT_RESULTS}, max: {config.TOOL_MAX_RESULTS})"
                ),
                default=config.TOOL_DEFAULT_RESULTS,
            ),
            ToolParameter(
                name="includeIncome",
                type="boolean",
                description=(
                    "Include income categories (positive amounts). "
                    "Default is false (expenses only)."
                ),
                default=False,
            ),
        ),
    )

    def __init__(
        self,
        aggregator: SpendingAggregator,
        default_results: int = config.TOOL_DEFAULT_RESULTS,
        max_results: int = config.TOOL_MAX_RESULTS,
    ) -> None:
        self._aggregator = aggregator
        self._default_results = default_results
        self._max_results = max_results

    async def __call__(
        self, context: AgentContext, arguments: Mapping[str, Any]
    ) -> dict[str, Any]:
        top_n = clamp_int(arguments.get("topN"), self._default_results, 1, self._max_results)
        include_income = coerce_bool(
            arguments.get("includeIncome", arguments.get("includePositive"))
        )
        logger.info(
            "GetCategorySpending called: topN=%d, includeIncome=%s", top_n, include_income
        )

        groups = await self._aggregator.category_totals(
            context.user_id, top_n, include_income
        )
        groups = sorted(groups, key=lambda g: abs(g.total), reverse=True)[:top_n]

        if not groups:
            return {
                "success": True,
                "count": 0,
                "grandTotal": 0,
                "message": NO_CATEGORIES_MESSAGE,
            }

        categories = [
            {"name": g.name, "total": round(abs(g.total), 2), "count": g.count}
            for g in groups
        ]
        return {
            "success": True,
            "count": len(categories),
            "grandTotal": round(sum(c["total"] for c in categories), 2),
            "categories": categories,
        }
