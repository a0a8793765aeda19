from datetime import date
from typing import Any

from loguru import logger
from pydantic import ValidationError

from talkledger import background
from talkledger.db.repository import LedgerStore, validation_failure
from talkledger.dedup import DedupGuard
from talkledger.errors import StoreFailure
from talkledger.models.schemas import Category, Note, ParsedIntent, Transaction
from talkledger.retrieval.ranker import Retriever


def make_transaction(**fields: Any) -> Transaction:
    """Build a Transaction, surfacing invariant violations as ValidationFailure."""
    try:
        return Transaction(**fields)
    except ValidationError as e:
        raise validation_failure(e) from e


def find_category(categories: list[Category], text: str | None) -> Category | None:
    """Match a category by id or name, case-insensitively."""
    needle = (text or "").strip().lower()
    if not needle:
        return None
    for c in categories:
        if needle in (c.id.lower(), c.name.lower()):
            return c
    return None


class LedgerService:
    """Single write path: dedup, store, then background indexing and category training."""

    def __init__(
        self,
        store: LedgerStore,
        dedup: DedupGuard,
        retriever: Retriever | None = None,
        default_currency: str = "TWD",
    ):
        self.store = store
        self.dedup = dedup
        self.retriever = retriever
        self.default_currency = default_currency

    async def resolve_category(self, user_id: str, hint: str | None, note: str = "") -> Category:
        categories = await self.store.get_categories(user_id)
        hit = find_category(categories, hint)
        if hit:
            return hit
        suggested = await self.store.suggest_category(user_id, note)
        hit = find_category(categories, suggested)
        if hit:
            logger.debug("Category {} suggested from note {!r}", hit.id, note)
            return hit
        return categories[0]

    async def transaction_from_intent(
        self, user_id: str, intent: ParsedIntent, today: date | None = None
    ) -> Transaction:
        category = await self.resolve_category(user_id, intent.category_name, intent.note)
        return make_transaction(
            date=intent.date or (today or date.today()).isoformat(),
            type=intent.type or "expense",
            category_id=category.id,
            currency=intent.currency or self.default_currency,
            rate=intent.rate or 1.0,
            amount=intent.amount,
            claim_amount=intent.claim_amount or 0,
            claimed=bool(intent.claimed),
            note=intent.note,
        )

    async def record(self, user_id: str, tx: Transaction, dedup: bool = True) -> Transaction | None:
        """Persist a transaction. Returns None when the dedup window already holds it."""
        if dedup and self.dedup.seen_recently(user_id, tx):
            return None
        try:
            saved = await self.store.add_transaction(user_id, tx)
        except StoreFailure:
            if dedup:
                self.dedup.forget(user_id, tx)
            raise
        self._after_write(user_id, saved)
        return saved

    async def update(self, user_id: str, tx_id: str, **fields: Any) -> Transaction | None:
        updated = await self.store.update_transaction(user_id, tx_id, **fields)
        if updated is not None:
            self._after_write(user_id, updated)
        return updated

    async def delete(self, user_id: str, tx_id: str) -> bool:
        return await self.store.delete_transaction(user_id, tx_id)

    async def add_note(self, user_id: str, note: Note) -> Note:
        saved = await self.store.add_note(user_id, note)
        if self.retriever is not None:
            background.spawn("embedding", self.retriever.index_note(user_id, saved))
        return saved

    async def _index(self, user_id: str, tx: Transaction) -> None:
        names = {c.id: c.name for c in await self.store.get_categories(user_id)}
        await self.retriever.index_transaction(user_id, tx, names.get(tx.category_id))

    def _after_write(self, user_id: str, tx: Transaction) -> None:
        # Only the write itself is awaited by the caller
        if self.retriever is not None:
            background.spawn("embedding", self._index(user_id, tx))
        background.spawn("category_model", self.store.train_category_model(user_id, tx.note, tx.category_id))
