from datetime import datetime

import pytest

from talkledger.errors import StoreFailure, ValidationFailure
from talkledger.models.schemas import Embedding, Note, Reminder, Transaction


def tx(**overrides) -> Transaction:
    data = {"date": "2025-10-14", "type": "expense", "category_id": "food", "amount": 120.0, "note": "coffee"}
    return Transaction(**{**data, **overrides})


async def test_categories_are_seeded_per_user(repo):
    categories = await repo.get_categories("u1")
    assert [c.id for c in categories] == ["food", "transport", "shopping", "salary"]
    # Seeding is idempotent
    assert len(await repo.get_categories("u1")) == 4
    assert len(await repo.get_categories("u2")) == 4


async def test_add_and_get_transaction(repo):
    saved = await repo.add_transaction("u1", tx())
    assert saved.id

    assert await repo.get_transaction("u1", saved.id) == saved
    assert await repo.get_transaction("u2", saved.id) is None


async def test_transactions_are_newest_first(repo):
    older = await repo.add_transaction("u1", tx(date="2025-10-01"))
    newer = await repo.add_transaction("u1", tx(date="2025-10-14"))

    assert [t.id for t in await repo.get_transactions("u1")] == [newer.id, older.id]


async def test_update_ignores_none_and_validates_merged_record(repo):
    saved = await repo.add_transaction("u1", tx())

    updated = await repo.update_transaction("u1", saved.id, amount=180, note=None)
    assert updated.amount == 180
    assert updated.note == "coffee"

    with pytest.raises(ValidationFailure) as e:
        await repo.update_transaction("u1", saved.id, amount=-1)
    assert e.value.field == "amount"
    assert (await repo.get_transaction("u1", saved.id)).amount == 180


async def test_update_and_delete_missing_transaction(repo):
    assert await repo.update_transaction("u1", "nope", amount=5) is None
    assert await repo.delete_transaction("u1", "nope") is False


async def test_delete_transaction(repo):
    saved = await repo.add_transaction("u1", tx())
    assert await repo.delete_transaction("u1", saved.id) is True
    assert await repo.get_transactions("u1") == []


async def test_storage_errors_become_store_failures(repo, monkeypatch):
    def broken(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(repo.transactions, "insert", broken)

    with pytest.raises(StoreFailure):
        await repo.add_transaction("u1", tx())


async def test_notes(repo):
    saved = await repo.add_note("u1", Note(title="milk", content="buy milk", tags=["home"]))
    notes = await repo.get_notes("u1")
    assert [n.id for n in notes] == [saved.id]
    assert notes[0].tags == ["home"]


async def test_reminders_sorted_soonest_first_and_done_hidden(repo):
    later = await repo.add_reminder("u1", Reminder(title="later", due_at=datetime(2025, 11, 1, 9)))
    undated = await repo.add_reminder("u1", Reminder(title="someday"))
    sooner = await repo.add_reminder("u1", Reminder(title="sooner", due_at=datetime(2025, 10, 20, 9)))

    assert [r.id for r in await repo.get_reminders("u1")] == [sooner.id, later.id, undated.id]

    done = await repo.update_reminder("u1", sooner.id, done=True)
    assert done.done is True
    assert [r.id for r in await repo.get_reminders("u1")] == [later.id, undated.id]
    assert len(await repo.get_reminders("u1", include_done=True)) == 3

    assert await repo.delete_reminder("u1", later.id) is True
    assert await repo.update_reminder("u1", later.id, done=True) is None


async def test_settings_defaults_and_update(repo):
    settings = await repo.get_settings("u1")
    assert settings.base_currency == "TWD"
    assert settings.monthly_budget == 0

    await repo.update_settings("u1", monthly_budget=20000, category_budgets={"food": 6000})
    await repo.update_settings("u1", nudges=False)

    settings = await repo.get_settings("u1")
    assert settings.monthly_budget == 20000
    assert settings.category_budgets == {"food": 6000}
    assert settings.nudges is False


async def test_recipients_are_unique(repo):
    await repo.add_recipient("tg:1")
    await repo.add_recipient("tg:1")
    await repo.add_recipient("tg:2")
    assert sorted(await repo.get_recipients()) == ["tg:1", "tg:2"]


async def test_embeddings_upsert(repo):
    await repo.upsert_embedding("u1", "transaction", "t1", Embedding(model="m", vector=[1.0, 0.0]))
    await repo.upsert_embedding("u1", "transaction", "t1", Embedding(model="m", vector=[0.0, 1.0]))

    stored = await repo.get_embeddings("u1", "transaction")
    assert stored == {"t1": Embedding(model="m", vector=[0.0, 1.0])}
    assert await repo.get_embeddings("u1", "note") == {}


async def test_delete_transaction_drops_its_embedding(repo):
    saved = await repo.add_transaction("u1", tx())
    other = await repo.add_transaction("u1", tx(note="tea"))
    for record_id in (saved.id, other.id):
        await repo.upsert_embedding("u1", "transaction", record_id, Embedding(model="m", vector=[1.0]))
    await repo.upsert_embedding("u1", "note", saved.id, Embedding(model="m", vector=[1.0]))

    await repo.delete_transaction("u1", saved.id)

    assert list(await repo.get_embeddings("u1", "transaction")) == [other.id]
    assert saved.id in await repo.get_embeddings("u1", "note")


async def test_category_model_learns_from_notes(repo):
    await repo.train_category_model("u1", "Starbucks latte", "food")
    await repo.train_category_model("u1", "starbucks mug", "shopping")
    await repo.train_category_model("u1", "starbucks 123", "food")

    assert await repo.suggest_category("u1", "starbucks") == "food"
    assert await repo.suggest_category("u1", "mug") == "shopping"
    assert await repo.suggest_category("u1", "unknown words") is None
    assert await repo.suggest_category("u2", "starbucks") is None
    assert await repo.suggest_category("u1", "") is None
