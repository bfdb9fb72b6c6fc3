"""Tools the budget agent can call to read the user's transactions.

Each tool is a small class with a hand-written ``descriptor`` (what the model
sees) and an async ``__call__(context, arguments)`` (what runs). The caller's
identity always comes from ``context``, never from the model's arguments.

- search.py:   SearchTransactions, free-text search over transactions
- spending.py: GetCategorySpending, totals per category
- registry.py: ToolRegistry, name -> tool map and the dispatch error boundary
"""

from budget_agent.ports import SpendingAggregator, TransactionSearch
from budget_agent.tools.base import ToolCallResult, ToolDescriptor, ToolParameter
from budget_agent.tools.registry import ToolRegistry
from budget_agent.tools.search import SearchTransactionsTool
from budget_agent.tools.spending import GetCategorySpendingTool

__all__ = [
    "GetCategorySpendingTool",
    "SearchTransactionsTool",
    "ToolCallResult",
    "ToolDescriptor",
    "ToolParameter",
    "ToolRegistry",
    "build_tool_registry",
]


def build_tool_registry(
    search: TransactionSearch, aggregator: SpendingAggregator
) -> ToolRegistry:
    """The standard tool set used by both agent flows."""
    return ToolRegistry(
        [
            SearchTransactionsTool(search),
            GetCategorySpendingTool(aggregator),
        ]
    )
