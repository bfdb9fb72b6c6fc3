"""Run-scoped agent context.

Concept - Scoped identity:
    The tools need to know *whose* transactions to read, but the model must
    never see (or be able to change) that identity. So each run gets its own
    ``AgentContext``, created when the run starts and passed by reference into
    every tool call. Two concurrent runs always hold two different contexts,
    and tool instances keep no per-user state, so one pooled tool object can
    safely serve many users at once.

    The context is a frozen dataclass: nothing can rebind ``user_id`` once the
    run has started.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from uuid import uuid4

from budget_agent.errors import AgentRunCancelled


@dataclass(frozen=True)
class AgentContext:
    """Identity of the user a single agent run acts for.

    Attributes:
        user_id: Authenticated user id. Read by tools, never put in a prompt.
        run_id:  Unique per run, only used to correlate log lines.
    """

    user_id: str
    run_id: str = field(default_factory=lambda: uuid4().hex)

    def __post_init__(self) -> None:
        if not self.user_id or not self.user_id.strip():
            raise ValueError("AgentContext requires a non-empty user_id")


class CancellationToken:
    """Cooperative cancellation signal for one agent run.

    The loop checks the token before every model call and every tool call.
    Cancelling never interrupts I/O that is already in flight.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise ``AgentRunCancelled`` if ``cancel()`` has been called."""
        if self._event.is_set():
            raise AgentRunCancelled("Agent run was cancelled")
