"""Fixed tool registry the chat model may call.

Each tool has a pydantic argument model; the same model yields the JSON
schema advertised to the provider and validates the call's arguments.
"""

import json
from collections.abc import Callable
from datetime import date, datetime
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from talkledger import reports
from talkledger.errors import ValidationFailure
from talkledger.ledger import LedgerService, find_category, make_transaction
from talkledger.models.schemas import Note, Reminder, Transaction


class QueryTransactionsArgs(BaseModel):
    keyword: str | None = Field(default=None, description="Text to look for in the note")
    category: str | None = Field(default=None, description="Category id or name")
    type: Literal["income", "expense"] | None = None
    date_from: str | None = Field(default=None, description="YYYY-MM-DD, inclusive")
    date_to: str | None = Field(default=None, description="YYYY-MM-DD, inclusive")
    unclaimed_only: bool = False
    limit: int = Field(default=20, ge=1, le=100)


class AddTransactionArgs(BaseModel):
    amount: float = Field(gt=0)
    type: Literal["income", "expense"] = "expense"
    date: str | None = Field(default=None, description="YYYY-MM-DD; today when omitted")
    category: str | None = Field(default=None, description="Category id or name")
    currency: str | None = None
    claim_amount: float = Field(default=0, ge=0)
    claimed: bool = False
    note: str = ""


class UpdateTransactionArgs(BaseModel):
    id: str
    amount: float | None = Field(default=None, gt=0)
    type: Literal["income", "expense"] | None = None
    date: str | None = None
    category: str | None = None
    currency: str | None = None
    claim_amount: float | None = Field(default=None, ge=0)
    claimed: bool | None = None
    note: str | None = None


class IdArgs(BaseModel):
    id: str


class MarkClaimedArgs(BaseModel):
    id: str
    claimed: bool = True


class QueryNotesArgs(BaseModel):
    keyword: str | None = None
    tag: str | None = None
    limit: int = Field(default=10, ge=1, le=50)


class AddNoteArgs(BaseModel):
    content: str = Field(min_length=1)
    title: str = ""
    tags: list[str] = []


class MonthArgs(BaseModel):
    month: str | None = Field(default=None, description="YYYY-MM; current month when omitted")


class RankingArgs(MonthArgs):
    type: Literal["income", "expense"] = "expense"
    limit: int = Field(default=5, ge=1, le=20)


class ListRemindersArgs(BaseModel):
    include_done: bool = False


class AddReminderArgs(BaseModel):
    title: str = Field(min_length=1)
    due_at: datetime | None = None
    priority: Literal["low", "medium", "high"] = "medium"
    note: str = ""


class UpdateReminderArgs(BaseModel):
    id: str
    title: str | None = None
    due_at: datetime | None = None
    priority: Literal["low", "medium", "high"] | None = None
    note: str | None = None
    done: bool | None = None


TOOLS: dict[str, tuple[type[BaseModel], str]] = {
    "query_transactions": (QueryTransactionsArgs, "Search the user's transactions."),
    "add_transaction": (AddTransactionArgs, "Record a new income or expense."),
    "update_transaction": (UpdateTransactionArgs, "Change fields of an existing transaction."),
    "delete_transaction": (IdArgs, "Delete a transaction by id. Only when the user clearly asked."),
    "mark_claimed": (MarkClaimedArgs, "Mark a transaction's reimbursement claim as done or not."),
    "query_notes": (QueryNotesArgs, "Search the user's notes."),
    "add_note": (AddNoteArgs, "Save a free-form note."),
    "compute_stats": (MonthArgs, "Income, expense and balance for a month."),
    "budget_delta": (MonthArgs, "Spending against the monthly and per-category budgets."),
    "category_ranking": (RankingArgs, "Categories ranked by total for a month."),
    "quick_report": (MonthArgs, "A short text report of the month."),
    "list_reminders": (ListRemindersArgs, "List reminders, soonest first."),
    "add_reminder": (AddReminderArgs, "Create a reminder."),
    "update_reminder": (UpdateReminderArgs, "Change a reminder, e.g. mark it done."),
    "delete_reminder": (IdArgs, "Delete a reminder by id."),
}


def tool_schemas() -> list[dict[str, Any]]:
    """Tool definitions in the chat completions `tools` format."""
    return [
        {
            "type": "function",
            "function": {"name": name, "description": description, "parameters": model.model_json_schema()},
        }
        for name, (model, description) in TOOLS.items()
    ]


def _tx(tx: Transaction) -> dict[str, Any]:
    return tx.model_dump(mode="json")


class ToolRegistry:
    def __init__(self, ledger: LedgerService, clock: Callable[[], date] = date.today):
        self.ledger = ledger
        self.store = ledger.store
        self.clock = clock

    def _month(self, month: str | None) -> str:
        return month or reports.month_key(self.clock())

    async def invoke(self, name: str, args: dict[str, Any] | str | None, user_id: str) -> dict[str, Any]:
        """Run one tool call. StoreFailure propagates; everything else becomes an error dict."""
        if name not in TOOLS:
            logger.warning("Model asked for unknown tool {}", name)
            return {"ok": False, "error": "unknown_tool"}
        model, _ = TOOLS[name]
        try:
            if isinstance(args, str):
                args = json.loads(args or "{}")
            parsed = model.model_validate(args or {})
        except (ValueError, ValidationError) as e:
            logger.warning("Invalid arguments for {}: {}", name, e)
            return {"ok": False, "error": "invalid_arguments"}

        logger.info("Tool {} for {}", name, user_id)
        try:
            return await getattr(self, f"_{name}")(user_id, parsed)
        except ValidationFailure as e:
            logger.warning("Tool {} rejected values: {}", name, e)
            return {"ok": False, "error": "invalid_arguments", "detail": str(e)}

    # ── Transactions ─────────────────────────────────────────────────

    async def _query_transactions(self, user_id: str, args: QueryTransactionsArgs) -> dict:
        txs = await self.store.get_transactions(user_id)
        if args.category:
            hit = find_category(await self.store.get_categories(user_id), args.category)
            txs = [t for t in txs if hit and t.category_id == hit.id]
        if args.keyword:
            needle = args.keyword.lower()
            txs = [t for t in txs if needle in t.note.lower()]
        if args.type:
            txs = [t for t in txs if t.type == args.type]
        if args.date_from:
            txs = [t for t in txs if t.date >= args.date_from]
        if args.date_to:
            txs = [t for t in txs if t.date <= args.date_to]
        if args.unclaimed_only:
            txs = reports.unclaimed(txs)
        return {"ok": True, "count": len(txs), "transactions": [_tx(t) for t in txs[: args.limit]]}

    async def _add_transaction(self, user_id: str, args: AddTransactionArgs) -> dict:
        category = await self.ledger.resolve_category(user_id, args.category, args.note)
        tx = make_transaction(
            date=args.date or self.clock().isoformat(),
            type=args.type,
            category_id=category.id,
            currency=args.currency or self.ledger.default_currency,
            amount=args.amount,
            claim_amount=args.claim_amount,
            claimed=args.claimed,
            note=args.note,
        )
        saved = await self.ledger.record(user_id, tx, dedup=True)
        if saved is None:
            return {"ok": True, "skipped": True, "reason": "duplicate"}
        return {"ok": True, "transaction": _tx(saved)}

    async def _update_transaction(self, user_id: str, args: UpdateTransactionArgs) -> dict:
        fields = args.model_dump(exclude={"id", "category"}, exclude_none=True)
        if args.category:
            hit = find_category(await self.store.get_categories(user_id), args.category)
            if hit is None:
                return {"ok": False, "error": "invalid_arguments", "detail": "unknown category"}
            fields["category_id"] = hit.id
        updated = await self.ledger.update(user_id, args.id, **fields)
        if updated is None:
            return {"ok": False, "error": "not_found"}
        return {"ok": True, "transaction": _tx(updated)}

    async def _delete_transaction(self, user_id: str, args: IdArgs) -> dict:
        if not await self.ledger.delete(user_id, args.id):
            return {"ok": False, "error": "not_found"}
        return {"ok": True, "deleted": args.id}

    async def _mark_claimed(self, user_id: str, args: MarkClaimedArgs) -> dict:
        updated = await self.ledger.update(user_id, args.id, claimed=args.claimed)
        if updated is None:
            return {"ok": False, "error": "not_found"}
        return {"ok": True, "transaction": _tx(updated)}

    # ── Notes ────────────────────────────────────────────────────────

    async def _query_notes(self, user_id: str, args: QueryNotesArgs) -> dict:
        notes = await self.store.get_notes(user_id)
        if args.keyword:
            needle = args.keyword.lower()
            notes = [n for n in notes if needle in n.content.lower() or needle in n.title.lower()]
        if args.tag:
            notes = [n for n in notes if args.tag.lstrip("#") in n.tags]
        return {"ok": True, "notes": [n.model_dump(mode="json") for n in notes[: args.limit]]}

    async def _add_note(self, user_id: str, args: AddNoteArgs) -> dict:
        note = Note(title=args.title or args.content[:30], content=args.content, tags=args.tags)
        saved = await self.ledger.add_note(user_id, note)
        return {"ok": True, "note": saved.model_dump(mode="json")}

    # ── Reports ──────────────────────────────────────────────────────

    async def _compute_stats(self, user_id: str, args: MonthArgs) -> dict:
        txs = await self.store.get_transactions(user_id)
        return {"ok": True, **reports.month_summary(txs, self._month(args.month))}

    async def _budget_delta(self, user_id: str, args: MonthArgs) -> dict:
        txs = await self.store.get_transactions(user_id)
        settings = await self.store.get_settings(user_id)
        categories = await self.store.get_categories(user_id)
        return {"ok": True, **reports.budget_delta(txs, settings, categories, self._month(args.month))}

    async def _category_ranking(self, user_id: str, args: RankingArgs) -> dict:
        txs = await self.store.get_transactions(user_id)
        categories = await self.store.get_categories(user_id)
        ranking = reports.category_ranking(
            txs, categories, month=self._month(args.month), tx_type=args.type, limit=args.limit
        )
        return {"ok": True, "ranking": ranking}

    async def _quick_report(self, user_id: str, args: MonthArgs) -> dict:
        txs = await self.store.get_transactions(user_id)
        settings = await self.store.get_settings(user_id)
        categories = await self.store.get_categories(user_id)
        return {"ok": True, "report": reports.quick_report(txs, categories, settings, self._month(args.month))}

    # ── Reminders ────────────────────────────────────────────────────

    async def _list_reminders(self, user_id: str, args: ListRemindersArgs) -> dict:
        reminders = await self.store.get_reminders(user_id, include_done=args.include_done)
        return {"ok": True, "reminders": [r.model_dump(mode="json") for r in reminders]}

    async def _add_reminder(self, user_id: str, args: AddReminderArgs) -> dict:
        saved = await self.store.add_reminder(user_id, Reminder(**args.model_dump()))
        return {"ok": True, "reminder": saved.model_dump(mode="json")}

    async def _update_reminder(self, user_id: str, args: UpdateReminderArgs) -> dict:
        updated = await self.store.update_reminder(user_id, args.id, **args.model_dump(exclude={"id"}, exclude_none=True))
        if updated is None:
            return {"ok": False, "error": "not_found"}
        return {"ok": True, "reminder": updated.model_dump(mode="json")}

    async def _delete_reminder(self, user_id: str, args: IdArgs) -> dict:
        if not await self.store.delete_reminder(user_id, args.id):
            return {"ok": False, "error": "not_found"}
        return {"ok": True, "deleted": args.id}
