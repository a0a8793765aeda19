import json
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from datetime import date
from typing import Any

from loguru import logger

from talkledger import reports
from talkledger.db.repository import LedgerStore
from talkledger.errors import StoreFailure
from talkledger.llm.client import Completion, CompletionClient, candidate_models
from talkledger.llm.prompts import CHAT_SYSTEM_PROMPT
from talkledger.llm.tools import ToolRegistry, tool_schemas
from talkledger.models.schemas import ChatMessage, ChatReply, Transaction
from talkledger.retrieval.ranker import Retriever


def _as_dicts(messages: list[ChatMessage | dict[str, Any]]) -> list[dict[str, Any]]:
    return [m.model_dump() if isinstance(m, ChatMessage) else dict(m) for m in messages]


def last_user_text(messages: list[dict[str, Any]]) -> str:
    for m in reversed(messages):
        if m.get("role") == "user":
            return str(m.get("content") or "")
    return ""


def heuristic_reply(messages: list[dict[str, Any]], txs: list[Transaction], today: date | None = None) -> str:
    """Offline answer: this month's totals from the loaded transactions."""
    summary = reports.month_summary(txs, reports.month_key(today))
    question = last_user_text(messages)
    text = (
        f"(Offline reply, no AI provider available.) This month: {summary['count']} records, "
        f"income {reports.format_amount(summary['income'])}, "
        f"expense {reports.format_amount(summary['expense'])}, "
        f"balance {reports.format_amount(summary['balance'])}."
    )
    if question:
        text += f"\nYou asked: \"{question}\". Setting a monthly budget and using quick entry keeps this picture current."
    return text


class ChatService:
    """Retrieval-grounded chat with one tool round trip and an offline fallback."""

    def __init__(
        self,
        client: CompletionClient,
        model: str,
        fallback_models: list[str],
        retriever: Retriever,
        tools: ToolRegistry,
        store: LedgerStore,
        clock: Callable[[], date] = date.today,
    ):
        self.client = client
        self.models = candidate_models(model, fallback_models)
        self.retriever = retriever
        self.tools = tools
        self.store = store
        self.clock = clock

    async def _context(self, user_id: str, query: str) -> str:
        try:
            context = await self.retriever.retrieve(user_id, query)
        except StoreFailure as e:
            logger.warning("Retrieval for {} failed, answering without context: {}", user_id, e)
            return "No matching ledger records."
        return context.to_prompt()

    async def _prompt(self, user_id: str, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        context = await self._context(user_id, last_user_text(messages))
        return [
            {"role": "system", "content": CHAT_SYSTEM_PROMPT},
            {"role": "system", "content": f"Today is {self.clock().isoformat()}.\n\n{context}"},
            *[m for m in messages if m.get("role") != "system"],
        ]

    async def _heuristic(self, user_id: str, messages: list[dict[str, Any]]) -> str:
        txs = await self.store.get_transactions(user_id)
        return heuristic_reply(messages, txs, self.clock())

    async def _run_tools(self, user_id: str, prompt: list[dict[str, Any]], first: Completion) -> tuple[list[dict[str, Any]], list[str]]:
        follow_up = [*prompt, first.assistant_message()]
        used = []
        for call in first.tool_calls:
            result = await self.tools.invoke(call.name, call.arguments, user_id)
            used.append(call.name)
            follow_up.append({
                "role": "tool",
                "tool_call_id": call.id,
                "content": json.dumps(result, ensure_ascii=False, default=str),
            })
        return follow_up, used

    async def reply(self, user_id: str, messages: list[ChatMessage | dict[str, Any]]) -> ChatReply:
        history = _as_dicts(messages)
        if not self.client.available:
            return ChatReply(text=await self._heuristic(user_id, history), provider="heuristic")

        prompt = await self._prompt(user_id, history)
        schemas = tool_schemas()
        # Set once the tools ran; later models only redo the follow-up completion
        follow_up: list[dict[str, Any]] | None = None
        used: list[str] = []
        for model in self.models:
            if follow_up is None:
                try:
                    first = await self.client.complete(model, prompt, tools=schemas)
                except Exception as e:
                    logger.warning("Chat via {} failed: {}", model, e)
                    continue
                if not first.tool_calls:
                    return ChatReply(text=first.text or "", provider="openai")
                follow_up, used = await self._run_tools(user_id, prompt, first)
            try:
                second = await self.client.complete(model, follow_up)
            except Exception as e:
                logger.warning("Chat follow-up via {} failed: {}", model, e)
                continue
            return ChatReply(text=second.text or "", provider="openai", tools_used=used)

        logger.error("Chat failed on every candidate model, answering offline")
        return ChatReply(text=await self._heuristic(user_id, history), provider="heuristic", tools_used=used)

    async def stream(self, user_id: str, messages: list[ChatMessage | dict[str, Any]]) -> AsyncIterator[str]:
        """Yield reply chunks. A model is swapped only before its first chunk went out."""
        history = _as_dicts(messages)
        if self.client.available:
            prompt = await self._prompt(user_id, history)
            for model in self.models:
                started = False
                try:
                    async with aclosing(self.client.stream(model, prompt)) as chunks:
                        async for chunk in chunks:
                            started = True
                            yield chunk
                    return
                except Exception as e:
                    if started:
                        logger.error("Stream via {} broke mid-reply: {}", model, e)
                        return
                    logger.warning("Stream via {} failed before output: {}", model, e)
        yield await self._heuristic(user_id, history)
