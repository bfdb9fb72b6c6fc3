"""Question answering over the user's own transactions.

``QueryAssistant.ask`` is the synchronous entry point: a question and a user
id in, a ``QueryResult`` out. It always returns a well-formed result. Agent
errors become apologetic answers with a failure ``outcome``, so callers never
have to catch anything.
"""

from __future__ import annotations

import logging

from langchain_core.language_models import BaseChatModel

from budget_agent import config
from budget_agent.agent import AgentLoop, get_chat_model
from budget_agent.context import AgentContext, CancellationToken
from budget_agent.errors import AgentRunCancelled, ModelBackendError
from budget_agent.models import QueryResult, RunOutcome
from budget_agent.parser import parse_query_result
from budget_agent.prompts import build_query_system_prompt
from budget_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

EMPTY_QUESTION_ANSWER = "Please provide a question about your finances."
TOO_LONG_ANSWER = "Your question is too long. Please keep it under {limit} characters."
NO_USER_ANSWER = "User authentication required."
TRUNCATED_ANSWER = (
    "I wasn't able to fully analyze your question. Please try rephrasing it."
)
FILTERED_ANSWER = "I'm unable to process that question."
FAILED_ANSWER = (
    "I'm sorry, I couldn't process your question right now. Please try again later."
)
CANCELLED_ANSWER = "The request was cancelled before an answer was ready."


class QueryAssistant:
    """Answers free-text questions by running the agent loop per question.

    Args:
        registry:       Tools the model may call.
        model:          Chat model to use. Defaults to the shared ChatAnthropic
                        client; with no model and no API key configured, ``ask``
                        returns a placeholder answer instead.
        max_iterations: Upper bound on model round-trips per question.
        max_length:     Longest question accepted, in characters.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        model: BaseChatModel | None = None,
        max_iterations: int = config.AGENT_MAX_ITERATIONS,
        max_length: int = config.QUERY_MAX_LENGTH,
    ) -> None:
        self._registry = registry
        self._model = model
        self._max_iterations = max_iterations
        self._max_length = max_length

    async def ask(
        self,
        question: str,
        user_id: str,
        cancel: CancellationToken | None = None,
    ) -> QueryResult:
        """Answer *question* using only *user_id*'s transactions."""
        if not question or not question.strip():
            return QueryResult(answer=EMPTY_QUESTION_ANSWER)
        if len(question) > self._max_length:
            return QueryResult(answer=TOO_LONG_ANSWER.format(limit=self._max_length))
        if not user_id or not user_id.strip():
            return QueryResult(answer=NO_USER_ANSWER)

        model = self._model
        if model is None:
            # Fallback for CI / environments without an API key
            if not config.ANTHROPIC_API_KEY:
                return QueryResult(
                    answer=f"[Agent placeholder, no API key configured] You asked: {question}"
                )
            model = get_chat_model()

        loop = AgentLoop(model, self._registry, max_iterations=self._max_iterations)
        context = AgentContext(user_id=user_id)

        try:
            run = await loop.run(
                context, build_query_system_prompt, question.strip(), cancel=cancel
            )
        except AgentRunCancelled:
            logger.info("Query cancelled for user %s", user_id)
            return QueryResult(answer=CANCELLED_ANSWER, outcome=RunOutcome.CANCELLED)
        except ModelBackendError:
            logger.exception("Failed to process query for user %s", user_id)
            return QueryResult(answer=FAILED_ANSWER, outcome=RunOutcome.FAILED)

        if run.outcome is RunOutcome.COMPLETE:
            return parse_query_result(run.final_text)
        if run.outcome is RunOutcome.FILTERED:
            return QueryResult(answer=FILTERED_ANSWER, outcome=RunOutcome.FILTERED)

        logger.warning("Query agent truncated for query: %.80s", question)
        return QueryResult(answer=TRUNCATED_ANSWER, outcome=RunOutcome.TRUNCATED)
