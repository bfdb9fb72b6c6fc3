"""Transaction search tool.

Data used:
- TransactionSearch.search(query, user_id, max_results)  - relevance-ranked rows
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from budget_agent import config
from budget_agent.context import AgentContext
from budget_agent.ports import TransactionSearch
from budget_agent.tools.base import (
    ToolDescriptor,
    ToolParameter,
    clamp_int,
    require_text,
)

logger = logging.getLogger(__name__)

NO_MATCHES_MESSAGE = "No transactions found matching the query."


class SearchTransactionsTool:
    """Find the caller's transactions that match a free-text query."""

    descriptor = ToolDescriptor(
        name="SearchTransactions",
        description=(
            "Search transactions using natural language. Use this to find specific "
            "patterns, merchants, or transaction types. Examples: 'subscriptions', "
            "'coffee shops', 'shopping', 'dining'. Returns up to maxResults "
            "transactions with descriptions and amounts."
        ),
        parameters=(
            ToolParameter(
                name="query",
                type="string",
                description="Natural language search query describing what transactions to find",
            ),
            ToolParameter(
                name="maxResults",
                type="integer",
                description=(
                    f"Maximum number of results to return "
                    f"(default: {config.TOOL_DEFAULT_RESULTS}, max: {config.TOOL_MAX_RESULTS})"
                ),
                default=config.TOOL_DEFAULT_RESULTS,
            ),
        ),
    )

    def __init__(
        self,
        search: TransactionSearch,
        default_results: int = config.TOOL_DEFAULT_RESULTS,
        max_results: int = config.TOOL_MAX_RESULTS,
    ) -> None:
        self._search = search
        self._default_results = default_results
        self._max_results = max_results

    async def __call__(
        self, context: AgentContext, arguments: Mapping[str, Any]
    ) -> dict[str, Any]:
        query = require_text(arguments, "query")
        limit = clamp_int(
            arguments.get("maxResults"), self._default_results, 1, self._max_results
        )
        logger.info("SearchTransactions called: query=%r, maxResults=%d", query, limit)

        results = await self._search.search(query, context.user_id, limit)
        # The store is trusted to filter, but the cap is ours to enforce.
        results = [t for t in results if t.user_id == context.user_id][:limit]

        if not results:
            return {"success": True, "count": 0, "query": query, "message": NO_MATCHES_MESSAGE}

        return {
            "success": True,
            "count": len(results),
            "query": query,
            "transactions": [
                {
                    "id": t.id,
                    "date": t.date.isoformat(),
                    "description": t.description,
                    "amount": t.amount,
                    "category": t.category,
                    "account": t.account,
                }
                for t in results
            ],
        }
