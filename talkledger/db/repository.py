import re
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Protocol

from loguru import logger
from pydantic import ValidationError
from tinydb import Query, TinyDB
from tinydb.storages import MemoryStorage

from talkledger.errors import LedgerError, StoreFailure, ValidationFailure
from talkledger.models.schemas import (
    Category,
    Embedding,
    LedgerSettings,
    Note,
    Reminder,
    Transaction,
)

DEFAULT_CATEGORIES = [
    Category(id="food", name="餐飲"),
    Category(id="transport", name="交通"),
    Category(id="shopping", name="購物"),
    Category(id="salary", name="薪資"),
]

WORD_RE = re.compile(r"\w+")


def model_words(note: str) -> list[str]:
    """Lower-cased word tokens of a note, numbers excluded."""
    return [w for w in WORD_RE.findall((note or "").lower()) if not w.isdigit()]


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def validation_failure(e: ValidationError) -> ValidationFailure:
    first = e.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return ValidationFailure(f"{field or 'record'}: {first.get('msg', 'invalid value')}", field=field)


class LedgerStore(Protocol):
    """What the pipeline, dialogs and tools need from persistence. Failures raise StoreFailure."""

    async def get_categories(self, user_id: str) -> list[Category]: ...
    async def add_transaction(self, user_id: str, tx: Transaction) -> Transaction: ...
    async def get_transaction(self, user_id: str, tx_id: str) -> Transaction | None: ...
    async def get_transactions(self, user_id: str) -> list[Transaction]: ...
    async def update_transaction(self, user_id: str, tx_id: str, **fields: Any) -> Transaction | None: ...
    async def delete_transaction(self, user_id: str, tx_id: str) -> bool: ...
    async def add_note(self, user_id: str, note: Note) -> Note: ...
    async def get_notes(self, user_id: str) -> list[Note]: ...
    async def add_reminder(self, user_id: str, reminder: Reminder) -> Reminder: ...
    async def get_reminders(self, user_id: str, include_done: bool = False) -> list[Reminder]: ...
    async def update_reminder(self, user_id: str, reminder_id: str, **fields: Any) -> Reminder | None: ...
    async def delete_reminder(self, user_id: str, reminder_id: str) -> bool: ...
    async def get_settings(self, user_id: str) -> LedgerSettings: ...
    async def update_settings(self, user_id: str, **fields: Any) -> LedgerSettings: ...
    async def add_recipient(self, user_id: str) -> None: ...
    async def get_recipients(self) -> list[str]: ...
    async def upsert_embedding(self, user_id: str, kind: str, record_id: str, embedding: Embedding) -> None: ...
    async def get_embeddings(self, user_id: str, kind: str) -> dict[str, Embedding]: ...
    async def train_category_model(self, user_id: str, note: str, category_id: str) -> None: ...
    async def suggest_category(self, user_id: str, note: str) -> str | None: ...


class LedgerRepository:
    """TinyDB-backed LedgerStore. One table per record kind, rows tagged with user_id."""

    def __init__(self, db_path: str = "talkledger.json", **storage_kwargs):
        self.db = TinyDB(db_path, **storage_kwargs) if db_path else TinyDB(**storage_kwargs)
        self.categories = self.db.table("categories")
        self.transactions = self.db.table("transactions")
        self.notes = self.db.table("notes")
        self.reminders = self.db.table("reminders")
        self.settings = self.db.table("settings")
        self.recipients = self.db.table("recipients")
        self.embeddings = self.db.table("embeddings")
        self.model = self.db.table("category_model")
        self._lock = threading.Lock()

    @classmethod
    def in_memory(cls) -> "LedgerRepository":
        return cls("", storage=MemoryStorage)

    @contextmanager
    def _guard(self, operation: str):
        with self._lock:
            try:
                yield
            except LedgerError:
                raise
            except ValidationError as e:
                raise validation_failure(e) from e
            except Exception as e:
                logger.error("Store operation {} failed: {}", operation, e)
                raise StoreFailure(f"{operation} failed: {e}") from e

    # ── Categories ───────────────────────────────────────────────────

    def _seed_categories(self, user_id: str) -> list[dict]:
        Cat = Query()
        docs = self.categories.search(Cat.user_id == user_id)
        if not docs:
            self.categories.insert_multiple(
                [{"user_id": user_id, **c.model_dump()} for c in DEFAULT_CATEGORIES]
            )
            docs = self.categories.search(Cat.user_id == user_id)
        return docs

    async def get_categories(self, user_id: str) -> list[Category]:
        with self._guard("get_categories"):
            return [Category(id=d["id"], name=d["name"]) for d in self._seed_categories(user_id)]

    # ── Transactions ─────────────────────────────────────────────────

    async def add_transaction(self, user_id: str, tx: Transaction) -> Transaction:
        with self._guard("add_transaction"):
            tx = tx.model_copy(update={"id": tx.id or _new_id()})
            self.transactions.insert({"user_id": user_id, **tx.model_dump(mode="json")})
            logger.info("Stored transaction {} for {}: {} {} {}", tx.id, user_id, tx.type, tx.amount, tx.currency)
            return tx

    def _tx_doc(self, user_id: str, tx_id: str):
        Tx = Query()
        return self.transactions.get((Tx.user_id == user_id) & (Tx.id == tx_id))

    @staticmethod
    def _to_tx(doc) -> Transaction:
        data = dict(doc)
        data.pop("user_id", None)
        return Transaction(**data)

    async def get_transaction(self, user_id: str, tx_id: str) -> Transaction | None:
        with self._guard("get_transaction"):
            doc = self._tx_doc(user_id, tx_id)
            return self._to_tx(doc) if doc else None

    async def get_transactions(self, user_id: str) -> list[Transaction]:
        """Newest first: by date, then by creation time."""
        with self._guard("get_transactions"):
            Tx = Query()
            txs = [self._to_tx(d) for d in self.transactions.search(Tx.user_id == user_id)]
            return sorted(txs, key=lambda t: (t.date, t.created_at), reverse=True)

    async def update_transaction(self, user_id: str, tx_id: str, **fields: Any) -> Transaction | None:
        with self._guard("update_transaction"):
            doc = self._tx_doc(user_id, tx_id)
            if doc is None:
                return None
            # Filter out None values so we only update provided fields
            updates = {k: v for k, v in fields.items() if v is not None and k not in ("id", "user_id")}
            # Validate the merged record before touching the table
            updated = self._to_tx({**doc, **updates})
            if updates:
                Tx = Query()
                self.transactions.update(
                    updated.model_dump(mode="json"), (Tx.user_id == user_id) & (Tx.id == tx_id)
                )
            return updated

    async def delete_transaction(self, user_id: str, tx_id: str) -> bool:
        with self._guard("delete_transaction"):
            Tx = Query()
            removed = self.transactions.remove((Tx.user_id == user_id) & (Tx.id == tx_id))
            if removed:
                E = Query()
                self.embeddings.remove(
                    (E.user_id == user_id) & (E.kind == "transaction") & (E.record_id == tx_id)
                )
            return bool(removed)

    # ── Notes ────────────────────────────────────────────────────────

    async def add_note(self, user_id: str, note: Note) -> Note:
        with self._guard("add_note"):
            note = note.model_copy(update={"id": note.id or _new_id()})
            self.notes.insert({"user_id": user_id, **note.model_dump(mode="json")})
            return note

    async def get_notes(self, user_id: str) -> list[Note]:
        with self._guard("get_notes"):
            N = Query()
            notes = []
            for doc in self.notes.search(N.user_id == user_id):
                data = dict(doc)
                data.pop("user_id", None)
                notes.append(Note(**data))
            return sorted(notes, key=lambda n: n.updated_at, reverse=True)

    # ── Reminders ────────────────────────────────────────────────────

    async def add_reminder(self, user_id: str, reminder: Reminder) -> Reminder:
        with self._guard("add_reminder"):
            reminder = reminder.model_copy(update={"id": reminder.id or _new_id()})
            self.reminders.insert({"user_id": user_id, **reminder.model_dump(mode="json")})
            return reminder

    @staticmethod
    def _to_reminder(doc) -> Reminder:
        data = dict(doc)
        data.pop("user_id", None)
        return Reminder(**data)

    async def get_reminders(self, user_id: str, include_done: bool = False) -> list[Reminder]:
        """Open reminders first, soonest due first; undated ones last."""
        with self._guard("get_reminders"):
            R = Query()
            reminders = [self._to_reminder(d) for d in self.reminders.search(R.user_id == user_id)]
            if not include_done:
                reminders = [r for r in reminders if not r.done]
            return sorted(reminders, key=lambda r: (r.done, r.due_at is None, r.due_at or datetime.max))

    async def update_reminder(self, user_id: str, reminder_id: str, **fields: Any) -> Reminder | None:
        with self._guard("update_reminder"):
            R = Query()
            cond = (R.user_id == user_id) & (R.id == reminder_id)
            doc = self.reminders.get(cond)
            if doc is None:
                return None
            updates = {k: v for k, v in fields.items() if v is not None and k not in ("id", "user_id")}
            updated = self._to_reminder({**doc, **updates, "updated_at": datetime.now()})
            self.reminders.update(updated.model_dump(mode="json"), cond)
            return updated

    async def delete_reminder(self, user_id: str, reminder_id: str) -> bool:
        with self._guard("delete_reminder"):
            R = Query()
            return bool(self.reminders.remove((R.user_id == user_id) & (R.id == reminder_id)))

    # ── Settings & recipients ────────────────────────────────────────

    async def get_settings(self, user_id: str) -> LedgerSettings:
        with self._guard("get_settings"):
            S = Query()
            doc = self.settings.get(S.user_id == user_id)
            if doc is None:
                return LedgerSettings()
            data = dict(doc)
            data.pop("user_id", None)
            return LedgerSettings(**data)

    async def update_settings(self, user_id: str, **fields: Any) -> LedgerSettings:
        with self._guard("update_settings"):
            S = Query()
            doc = self.settings.get(S.user_id == user_id) or {}
            data = {k: v for k, v in dict(doc).items() if k != "user_id"}
            merged = LedgerSettings(**{**data, **{k: v for k, v in fields.items() if v is not None}})
            self.settings.upsert({"user_id": user_id, **merged.model_dump()}, S.user_id == user_id)
            return merged

    async def add_recipient(self, user_id: str) -> None:
        with self._guard("add_recipient"):
            R = Query()
            self.recipients.upsert({"user_id": user_id}, R.user_id == user_id)

    async def get_recipients(self) -> list[str]:
        with self._guard("get_recipients"):
            return [d["user_id"] for d in self.recipients.all()]

    # ── Embeddings ───────────────────────────────────────────────────

    async def upsert_embedding(self, user_id: str, kind: str, record_id: str, embedding: Embedding) -> None:
        with self._guard("upsert_embedding"):
            E = Query()
            self.embeddings.upsert(
                {"user_id": user_id, "kind": kind, "record_id": record_id, **embedding.model_dump()},
                (E.user_id == user_id) & (E.kind == kind) & (E.record_id == record_id),
            )

    async def get_embeddings(self, user_id: str, kind: str) -> dict[str, Embedding]:
        with self._guard("get_embeddings"):
            E = Query()
            docs = self.embeddings.search((E.user_id == user_id) & (E.kind == kind))
            return {d["record_id"]: Embedding(model=d["model"], vector=d["vector"]) for d in docs}

    # ── Category model ───────────────────────────────────────────────

    async def train_category_model(self, user_id: str, note: str, category_id: str) -> None:
        if not note or not category_id:
            return
        with self._guard("train_category_model"):
            M = Query()
            for word in set(model_words(note)):
                cond = (M.user_id == user_id) & (M.word == word)
                doc = self.model.get(cond)
                counts = dict(doc["counts"]) if doc else {}
                counts[category_id] = counts.get(category_id, 0) + 1
                self.model.upsert({"user_id": user_id, "word": word, "counts": counts}, cond)

    async def suggest_category(self, user_id: str, note: str) -> str | None:
        words = model_words(note)
        if not words:
            return None
        with self._guard("suggest_category"):
            M = Query()
            scores: dict[str, int] = {}
            for word in words:
                doc = self.model.get((M.user_id == user_id) & (M.word == word))
                if not doc:
                    continue
                for category_id, count in doc["counts"].items():
                    scores[category_id] = scores.get(category_id, 0) + int(count)
            if not scores:
                return None
            return max(scores.items(), key=lambda kv: kv[1])[0]
