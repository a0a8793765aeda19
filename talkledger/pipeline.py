import re
from collections.abc import Callable
from datetime import date

from loguru import logger

from talkledger import background, reports
from talkledger.dialogs.actions import decode_action, encode_action
from talkledger.dialogs.base import fmt, is_cancel
from talkledger.dialogs.engine import DialogEngine
from talkledger.errors import StoreFailure, UnparseableInput, ValidationFailure
from talkledger.ledger import LedgerService, make_transaction
from talkledger.llm.chat import ChatService
from talkledger.llm.parser import AiParser
from talkledger.models.schemas import (
    BatchSummary,
    Button,
    CreateTransactionRequest,
    ParsedIntent,
    Reply,
    Transaction,
)
from talkledger.parsing.merge import merge
from talkledger.parsing.text_parser import TextParser, normalize_text

BATCH_SPLIT_RE = re.compile(r"[\n;；]+")
DELETE_LAST_RE = re.compile(r"^(刪除|删除|撤銷|取消)(上一筆|最後一筆|上筆)$|^(delete|undo|remove)( the)? last( one| entry| record)?$", re.IGNORECASE)
QUESTION_START_RE = re.compile(
    r"^(怎麼|怎样|如何|為什麼|为什么|多少|什麼|什么|哪|是否|能不能|可以|請問|"
    r"how|what|why|when|which|where|who|can|could|should|is|are|do|does)(?![A-Za-z])",
    re.IGNORECASE,
)

STORE_DOWN = "The ledger is unavailable right now, please try again."
NEED_DETAIL = "I could not find an amount in that. Try e.g. \"午餐 120 元\", or start a guided entry."


def is_question(text: str) -> bool:
    t = normalize_text(text)
    return t.endswith(("?", "？")) or bool(QUESTION_START_RE.match(t))


def split_batch(text: str) -> list[str]:
    return [line.strip() for line in BATCH_SPLIT_RE.split(text or "") if line.strip()]


def describe_tx(tx: Transaction) -> str:
    text = f"{tx.type} {fmt(tx.amount)} {tx.currency} on {tx.date} [{tx.category_id}]"
    if tx.claim_amount:
        text += f", claim {fmt(tx.claim_amount)}" + (" (claimed)" if tx.claimed else "")
    if tx.note:
        text += f": {tx.note}"
    return text


class IntentPipeline:
    """Turns one inbound event into at most one validated ledger command and a reply."""

    def __init__(
        self,
        engine: DialogEngine,
        ledger: LedgerService,
        text_parser: TextParser,
        ai_parser: AiParser,
        chat: ChatService,
        clock: Callable[[], date] = date.today,
    ):
        self.engine = engine
        self.ledger = ledger
        self.store = ledger.store
        self.text_parser = text_parser
        self.ai_parser = ai_parser
        self.chat = chat
        self.clock = clock

    # ── Parsing ──────────────────────────────────────────────────────

    async def parse_intent(self, user_id: str, text: str) -> ParsedIntent:
        """Deterministic parse, AI parse when available, then the merge policy."""
        names = [c.name for c in await self.store.get_categories(user_id)]
        ai_result = await self.ai_parser.parse(text, names, self.clock())
        return merge(text, ai_result, self.text_parser, today=self.clock())

    # ── Events ───────────────────────────────────────────────────────

    async def handle_message(self, user_id: str, text: str) -> Reply:
        text = (text or "").strip()
        logger.info("Message from {}: {}", user_id, text)
        background.spawn("recipients", self.store.add_recipient(user_id))
        if not text:
            return Reply(text=NEED_DETAIL)

        try:
            reply = await self.engine.handle_text(user_id, text)
            if reply is not None:
                return reply

            if is_cancel(text):
                return Reply(text="Nothing to cancel.")
            flow = self.engine.trigger(text)
            if flow:
                return await self.engine.start(flow, user_id)
            if len(split_batch(text)) > 1:
                summary = await self.handle_batch(user_id, text)
                return Reply(text=summary.render())
            return await self._free_text(user_id, text)
        except StoreFailure as e:
            logger.error("Store failure handling message from {}: {}", user_id, e)
            return Reply(text=STORE_DOWN)

    async def handle_postback(self, user_id: str, data: str | dict[str, str]) -> Reply:
        action = decode_action(data)
        if action is None:
            return Reply(text="Sorry, I did not understand that button.")
        logger.info("Postback from {}: {} {}", user_id, action.flow, action.step)
        try:
            return await self.engine.handle_action(user_id, action)
        except StoreFailure as e:
            logger.error("Store failure handling postback from {}: {}", user_id, e)
            return Reply(text=STORE_DOWN)

    async def _free_text(self, user_id: str, text: str) -> Reply:
        local = self.text_parser.parse(text, today=self.clock())
        if not local.actionable:
            answer = await self._quick_query(user_id, text)
            if answer:
                return Reply(text=answer)
            if DELETE_LAST_RE.match(normalize_text(text)):
                return await self._propose_delete_last(user_id)
            if is_question(text):
                chat = await self.chat.reply(user_id, [{"role": "user", "content": text}])
                return Reply(text=chat.text)

        intent = await self.parse_intent(user_id, text)
        try:
            if not intent.actionable:
                raise UnparseableInput(text)
            tx = await self.ledger.transaction_from_intent(user_id, intent, today=self.clock())
        except UnparseableInput:
            start = Button(label="Guided entry", data=encode_action("add", "start"))
            return Reply(text=NEED_DETAIL, buttons=[[start]])
        except ValidationFailure as e:
            return Reply(text=f"Could not record that: {e}")

        if intent.amount_source == "ai":
            # Amount came only from the model: ask before writing
            return await self.engine.propose(user_id, "add_tx", tx.model_dump(mode="json", exclude={"id", "created_at"}))
        return await self._record(user_id, tx)

    async def _record(self, user_id: str, tx: Transaction) -> Reply:
        saved = await self.ledger.record(user_id, tx, dedup=True)
        if saved is None:
            return Reply(text="Skipped: the same record was just saved.")
        edit = Button(label="Edit", data=encode_action("edit", "start", id=saved.id))
        return Reply(text=f"Recorded {describe_tx(saved)}", buttons=[[edit]])

    async def _quick_query(self, user_id: str, text: str) -> str | None:
        txs = await self.store.get_transactions(user_id)
        categories = await self.store.get_categories(user_id)
        settings = await self.store.get_settings(user_id)
        return reports.quick_answer(text, txs, categories, settings, today=self.clock())

    async def _propose_delete_last(self, user_id: str) -> Reply:
        latest = reports.recent(await self.store.get_transactions(user_id), limit=1)
        if not latest:
            return Reply(text="Nothing to delete.")
        return await self.engine.propose(user_id, "delete_tx", latest[0].model_dump(mode="json"))

    # ── Batch & form ─────────────────────────────────────────────────

    async def handle_batch(self, user_id: str, text: str) -> BatchSummary:
        """Each line is its own record; a store failure stops the run."""
        summary = BatchSummary()
        for line in split_batch(text):
            try:
                intent = await self.parse_intent(user_id, line)
                if not intent.actionable:
                    raise UnparseableInput(line)
                tx = await self.ledger.transaction_from_intent(user_id, intent, today=self.clock())
            except (UnparseableInput, ValidationFailure):
                summary.failed += 1
                summary.lines.append(f"not understood: {line}")
                continue

            try:
                saved = await self.ledger.record(user_id, tx, dedup=True)
            except StoreFailure as e:
                summary.error = str(e)
                summary.lines.append(f"not saved: {line}")
                logger.error("Batch for {} stopped: {}", user_id, e)
                break
            if saved is None:
                summary.skipped += 1
                summary.lines.append(f"duplicate: {line}")
            else:
                summary.added += 1
                summary.lines.append(f"added: {describe_tx(saved)}")
        logger.info("Batch for {}: {} added, {} skipped, {} failed", user_id, summary.added, summary.skipped, summary.failed)
        return summary

    async def submit_form(self, request: CreateTransactionRequest) -> Transaction | None:
        """Web form write. Returns None if the dedup window already holds the record."""
        category = await self.ledger.resolve_category(request.user_id, request.category_id, request.note)
        tx = make_transaction(**{**request.model_dump(exclude={"user_id"}), "category_id": category.id})
        return await self.ledger.record(request.user_id, tx, dedup=True)
