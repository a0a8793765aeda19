import json

import pytest

from talkledger import background
from talkledger.errors import StoreFailure
from talkledger.llm.tools import TOOLS, tool_schemas


@pytest.fixture(autouse=True)
async def drained():
    yield
    await background.drain()


@pytest.fixture
def invoke(services):
    async def call(name, args=None, user_id="u1"):
        return await services.tools.invoke(name, args, user_id)

    return call


def test_schemas_cover_every_tool():
    schemas = tool_schemas()
    assert [s["function"]["name"] for s in schemas] == list(TOOLS)
    assert len(schemas) == 15
    add = next(s for s in schemas if s["function"]["name"] == "add_transaction")
    assert add["function"]["parameters"]["required"] == ["amount"]


async def test_unknown_tool(invoke):
    assert await invoke("launch_rocket", {}) == {"ok": False, "error": "unknown_tool"}


async def test_invalid_arguments(invoke):
    assert (await invoke("add_transaction", {"amount": -5}))["error"] == "invalid_arguments"
    assert (await invoke("add_transaction", "{not json"))["error"] == "invalid_arguments"

    bad_date = await invoke("add_transaction", {"amount": 5, "date": "2025-02-30"})
    assert bad_date["error"] == "invalid_arguments"
    assert "date" in bad_date["detail"]


async def test_add_transaction_goes_through_dedup(invoke, services):
    args = json.dumps({"amount": 120, "note": "coffee", "category": "餐飲"})

    first = await invoke("add_transaction", args)
    second = await invoke("add_transaction", args)

    assert first["ok"] is True
    assert first["transaction"]["category_id"] == "food"
    assert first["transaction"]["date"] == "2025-10-15"
    assert second == {"ok": True, "skipped": True, "reason": "duplicate"}
    assert len(await services.repo.get_transactions("u1")) == 1


async def test_query_update_claim_and_delete(invoke):
    added = await invoke("add_transaction", {"amount": 450, "note": "taxi", "category": "transport", "claim_amount": 450})
    tx_id = added["transaction"]["id"]

    unclaimed = await invoke("query_transactions", {"unclaimed_only": True})
    assert unclaimed["count"] == 1

    updated = await invoke("update_transaction", {"id": tx_id, "amount": 480, "category": "購物"})
    assert updated["transaction"]["amount"] == 480
    assert updated["transaction"]["category_id"] == "shopping"

    claimed = await invoke("mark_claimed", {"id": tx_id})
    assert claimed["transaction"]["claimed"] is True
    assert (await invoke("query_transactions", {"unclaimed_only": True}))["count"] == 0

    assert (await invoke("query_transactions", {"keyword": "TAXI"}))["count"] == 1
    assert (await invoke("query_transactions", {"category": "food"}))["count"] == 0

    assert await invoke("delete_transaction", {"id": tx_id}) == {"ok": True, "deleted": tx_id}
    assert await invoke("delete_transaction", {"id": tx_id}) == {"ok": False, "error": "not_found"}


async def test_update_missing_or_bad_category(invoke):
    assert await invoke("update_transaction", {"id": "nope", "amount": 5}) == {"ok": False, "error": "not_found"}

    added = await invoke("add_transaction", {"amount": 80})
    result = await invoke("update_transaction", {"id": added["transaction"]["id"], "category": "spaceship"})
    assert result["error"] == "invalid_arguments"


async def test_reports(invoke, services):
    await services.repo.update_settings("u1", monthly_budget=1000, category_budgets={"food": 100})
    await invoke("add_transaction", {"amount": 120, "category": "food", "note": "lunch"})
    await invoke("add_transaction", {"amount": 50000, "type": "income", "category": "salary", "note": "october"})

    stats = await invoke("compute_stats", {})
    assert (stats["month"], stats["income"], stats["expense"], stats["balance"]) == ("2025-10", 50000, 120, 49880)

    budget = await invoke("budget_delta", {"month": "2025-10"})
    assert budget["remaining"] == 880
    assert budget["categories"][0]["over"] is True

    ranking = await invoke("category_ranking", {"type": "income"})
    assert ranking["ranking"][0]["category_id"] == "salary"

    report = await invoke("quick_report", {})
    assert report["report"].startswith("2025-10: income TWD 50,000")


async def test_notes(invoke):
    await invoke("add_note", {"content": "wifi password is on the router", "tags": ["home"]})
    await invoke("add_note", {"content": "dentist next week"})

    assert len((await invoke("query_notes", {"tag": "#home"}))["notes"]) == 1
    assert len((await invoke("query_notes", {"keyword": "DENTIST"}))["notes"]) == 1
    assert (await invoke("add_note", {"content": ""}))["error"] == "invalid_arguments"


async def test_reminders(invoke):
    added = await invoke("add_reminder", {"title": "pay rent", "due_at": "2025-11-01T09:00:00", "priority": "high"})
    reminder_id = added["reminder"]["id"]

    assert len((await invoke("list_reminders", {}))["reminders"]) == 1

    done = await invoke("update_reminder", {"id": reminder_id, "done": True})
    assert done["reminder"]["done"] is True
    assert (await invoke("list_reminders", {}))["reminders"] == []
    assert len((await invoke("list_reminders", {"include_done": True}))["reminders"]) == 1

    assert (await invoke("delete_reminder", {"id": reminder_id}))["ok"] is True
    assert (await invoke("delete_reminder", {"id": reminder_id}))["error"] == "not_found"
    assert (await invoke("update_reminder", {"id": reminder_id, "done": True}))["error"] == "not_found"


async def test_store_failure_propagates(invoke, services, monkeypatch):
    async def store_down(*args, **kwargs):
        raise StoreFailure("db down")

    monkeypatch.setattr(services.repo, "get_transactions", store_down)

    with pytest.raises(StoreFailure):
        await invoke("query_transactions", {})
