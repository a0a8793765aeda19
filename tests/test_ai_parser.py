from datetime import date

from talkledger.llm.parser import AiParser, normalize_ai_result, strip_code_fences

from tests.fakes import FakeCompletionClient

TODAY = date(2025, 10, 15)


async def test_fenced_json_is_parsed_and_normalized():
    client = FakeCompletionClient(replies=[
        '```json\n{"type": "expense", "amount": 120, "currency": "twd", "date": "2025-10-14",'
        ' "categoryName": "餐飲", "note": "咖啡"}\n```'
    ])
    parser = AiParser(client, "m1", ["m2"])

    result = await parser.parse("昨天 咖啡 120 元", ["餐飲"], TODAY)

    assert result.amount == 120
    assert result.amount_source == "ai"
    assert result.currency == "TWD"
    assert result.date == "2025-10-14"
    assert result.category_name == "餐飲"
    assert client.calls[0]["json_mode"] is True
    assert client.calls[0]["messages"][-1] == {"role": "user", "content": "昨天 咖啡 120 元"}


async def test_falls_back_to_next_model():
    client = FakeCompletionClient(replies=[RuntimeError("rate limited"), '{"amount": 50}'])
    parser = AiParser(client, "m1", ["m2"])

    result = await parser.parse("lunch 50", today=TODAY)

    assert result.amount == 50
    assert [c["model"] for c in client.calls] == ["m1", "m2"]


async def test_returns_none_when_every_model_fails():
    client = FakeCompletionClient(replies=["not json", "[1, 2]"])
    parser = AiParser(client, "m1", ["m2"])

    assert await parser.parse("lunch 50", today=TODAY) is None
    assert len(client.calls) == 2


async def test_returns_none_without_provider():
    client = FakeCompletionClient(available=False)
    parser = AiParser(client, "m1")

    assert await parser.parse("lunch 50", today=TODAY) is None
    assert await AiParser(FakeCompletionClient(), "m1").parse("   ") is None
    assert client.calls == []


def test_normalize_clamps_bad_fields():
    assert normalize_ai_result({"amount": "abc"}).amount is None
    assert normalize_ai_result({"amount": -5}).amount is None
    assert normalize_ai_result({"amount": True}).amount is None
    assert normalize_ai_result({"amount": float("inf")}).amount is None
    assert normalize_ai_result({"amount": "80"}).amount == 80
    assert normalize_ai_result({"date": "2025/10/01"}).date is None
    assert normalize_ai_result({"date": "2025-02-30"}).date is None
    assert normalize_ai_result({"claimed": "yes"}).claimed is None
    assert normalize_ai_result({"claim_amount": 30}).claim_amount == 30
    assert normalize_ai_result({"rate": 31.5}).rate == 31.5
    assert normalize_ai_result({"rate": 0}).rate is None
    assert normalize_ai_result({"rate": "n/a"}).rate is None
    assert normalize_ai_result({"rate": float("nan")}).rate is None


def test_normalize_type_and_lengths():
    assert normalize_ai_result({"type": "INCOME"}).type == "income"
    assert normalize_ai_result({"type": "gift"}).type == "expense"
    result = normalize_ai_result({"note": "x" * 500, "categoryName": "c" * 100, "emotion": "e" * 100})
    assert len(result.note) == 200
    assert len(result.category_name) == 40
    assert len(result.emotion) == 40
    assert result.amount_source is None


def test_strip_code_fences():
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'
