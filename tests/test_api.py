import pytest
from fastapi.testclient import TestClient

from main import app


@pytest.fixture(scope="module")
def client():
    # The bot token is empty in tests, so startup only logs a warning
    with TestClient(app) as client:
        yield client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_message_event_records(client):
    response = client.post("/events/message", json={"user_id": "api-msg", "text": "午餐 120 元"})
    assert response.status_code == 200
    assert response.json()["text"].startswith("Recorded expense 120 TWD")

    listed = client.get("/transactions", params={"user_id": "api-msg"}).json()
    assert [t["amount"] for t in listed] == [120]


def test_postback_event(client):
    response = client.post("/events/postback", json={"user_id": "api-pb", "data": "flow=add&step=start"})
    assert response.status_code == 200
    assert response.json()["text"].startswith("New expense")

    response = client.post("/events/postback", json={"user_id": "api-pb", "data": {"flow": "add", "step": "cancel"}})
    assert response.json()["text"] == "Cancelled."


def test_batch(client):
    body = {"user_id": "api-batch", "text": "早餐 60 元\n晚餐 200 元"}
    first = client.post("/batch", json=body).json()
    second = client.post("/batch", json=body).json()
    assert (first["added"], second["skipped"]) == (2, 2)


def test_parse(client):
    response = client.post("/parse", json={"message": "咖啡 120 元"})
    assert response.status_code == 200
    assert response.json()["amount"] == 120
    assert response.json()["amount_source"] == "local"


def test_create_transaction(client):
    body = {"user_id": "api-form", "date": "2025-10-15", "category_id": "food", "amount": 88, "note": "bento"}

    created = client.post("/transactions", json=body)
    duplicate = client.post("/transactions", json=body)
    invalid = client.post("/transactions", json={**body, "amount": 0, "note": "free"})

    assert created.json()["transaction"]["amount"] == 88
    assert duplicate.json() == {"ok": True, "skipped": True}
    assert invalid.status_code == 422
    assert invalid.json()["detail"]["field"] == "amount"


def test_chat_offline(client):
    body = {"user_id": "api-chat", "messages": [{"role": "user", "content": "How am I doing?"}]}

    reply = client.post("/chat", json=body).json()
    streamed = client.post("/chat/stream", json=body)

    assert reply["provider"] == "heuristic"
    assert streamed.status_code == 200
    assert streamed.text.startswith("(Offline reply")
