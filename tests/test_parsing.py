from datetime import date, datetime

import pytest

from talkledger.models.schemas import ParsedIntent
from talkledger.parsing.merge import merge
from talkledger.parsing.numerals import chinese_to_int, is_numeral_word
from talkledger.parsing.text_parser import (
    TextParser,
    extract_date,
    extract_datetime,
    extract_time,
    normalize_text,
)

TODAY = date(2025, 10, 15)


@pytest.fixture
def parser():
    return TextParser()


# ── Chinese numerals ─────────────────────────────────────────────────


@pytest.mark.parametrize(
    "text, expected",
    [
        ("一百二十", 120),
        ("十五", 15),
        ("兩千五", 2500),
        ("三百八", 380),
        ("一萬二", 12000),
        ("一千零五", 1005),
        ("一二三", 123),
        ("壹佰", 100),
    ],
)
def test_chinese_to_int(text, expected):
    assert chinese_to_int(text) == expected


def test_malformed_numerals_are_rejected():
    assert chinese_to_int("三四百") is None
    assert chinese_to_int("") is None
    assert chinese_to_int("咖啡") is None
    assert not is_numeral_word("十月")


# ── Deterministic parser ─────────────────────────────────────────────


def test_relative_date_unit_amount_and_category(parser):
    intent = parser.parse("昨天 咖啡 120 元", today=TODAY)
    assert intent.amount == 120
    assert intent.amount_source == "local"
    assert intent.currency == "TWD"
    assert intent.date == "2025-10-14"
    assert intent.category_name == "餐飲"
    assert "咖啡" in intent.note


def test_ordinals_and_months_are_not_amounts(parser):
    intent = parser.parse("十月 第三次 買咖啡", today=TODAY)
    assert intent.amount is None
    assert not intent.actionable
    assert intent.type == "expense"


def test_times_and_english_ordinals_are_not_amounts(parser):
    assert parser.amount("Oct 3rd coffee at 10:30") is None
    assert parser.amount("下午 3點半 開會") is None


def test_colloquial_chinese_amount(parser):
    assert parser.amount("午餐 兩千五 元") == 2500


def test_grouped_digits_and_income(parser):
    intent = parser.parse("薪水 52,000", today=TODAY)
    assert intent.type == "income"
    assert intent.amount == 52000
    assert intent.category_name == "薪資"


def test_thousands_multiplier(parser):
    intent = parser.parse("5k 買鞋", today=TODAY)
    assert intent.amount == 5000
    assert intent.type == "expense"
    assert intent.category_name == "購物"


def test_currency_code_before_amount(parser):
    intent = parser.parse("USD 30 lunch", today=TODAY)
    assert intent.currency == "USD"
    assert intent.amount == 30


def test_claim_number_is_not_the_amount(parser):
    intent = parser.parse("計程車 450 請款 300 未請款", today=TODAY)
    assert intent.amount == 450
    assert intent.claim_amount == 300
    assert intent.claimed is False
    assert intent.category_name == "交通"


def test_full_width_digits(parser):
    assert parser.amount("午餐１２０元") == 120


def test_zero_is_not_an_amount(parser):
    assert parser.amount("0 元") is None


def test_impossible_date_is_ignored(parser):
    intent = parser.parse("2025-02-30 午餐 100 元", today=TODAY)
    assert intent.date is None
    assert intent.amount == 100


def test_month_day_date_is_scrubbed_from_amount(parser):
    intent = parser.parse("10/12 晚餐 300", today=TODAY)
    assert intent.date == "2025-10-12"
    assert intent.amount == 300


def test_empty_text(parser):
    intent = parser.parse("   ", today=TODAY)
    assert intent.amount is None
    assert intent.note == ""


def test_unit_amounts_only_counts_numbers_beside_units(parser):
    assert parser.unit_amounts("3月 5元 貼紙") == [5.0]
    assert parser.unit_amounts("十月 第三次 買咖啡") == []


def test_date_and_time_helpers():
    assert extract_date("2025年11月2日", TODAY) == "2025-11-02"
    assert extract_date("Oct 12", TODAY) == "2025-10-12"
    assert extract_date("前天", TODAY) == "2025-10-13"
    assert extract_date("hello", TODAY) is None
    assert extract_time("25:00") is None
    assert extract_datetime("明天 15:30", TODAY) == datetime(2025, 10, 16, 15, 30)
    assert extract_datetime("明天", TODAY) == datetime(2025, 10, 16, 9, 0)
    assert normalize_text("  ＡＢＣ　１２３ ") == "ABC 123"


def test_exchange_rate_is_read_and_never_the_amount(parser):
    intent = parser.parse("美金 100 匯率 31.5 機票", today=TODAY)
    assert (intent.currency, intent.amount, intent.rate) == ("USD", 100, 31.5)
    assert parser.parse("USD 20 rate 32 taxi", today=TODAY).rate == 32
    assert parser.parse("午餐 120 元", today=TODAY).rate is None
    assert parser.unit_amounts("匯率 31.5 元") == []


def test_day_counts_and_discounts_are_not_amounts(parser):
    intent = parser.parse("3天前 咖啡", today=TODAY)
    assert intent.amount is None
    assert intent.date == "2025-10-12"

    assert parser.amount("打 8 折 買鞋 20%") is None
    assert parser.amount("7.5折 外套 1500 元") == 1500
    assert parser.amount("鞋子 1200 折扣 200") == 1200
    assert parser.amount("2 days ago lunch 90") == 90


def test_relative_day_counts():
    assert extract_date("三天後 看牙醫", TODAY) == "2025-10-18"
    assert extract_date("2 weeks ago", TODAY) == "2025-10-01"
    assert extract_date("1 day later", TODAY) == "2025-10-16"
    assert extract_date("兩週前", TODAY) == "2025-10-01"


# ── Merge policy ─────────────────────────────────────────────────────


def test_local_amount_overrides_ai(parser):
    ai = ParsedIntent(type="expense", amount=999, amount_source="ai", category_name="餐飲")
    merged = merge("咖啡 120 元", ai, parser, today=TODAY)
    assert merged.amount == 120
    assert merged.amount_source == "local"
    assert merged.category_name == "餐飲"


def test_ai_amount_kept_when_text_backs_it(parser):
    ai = ParsedIntent(type="expense", amount=5, amount_source="ai")
    merged = merge("3月 5元 貼紙", ai, parser, today=TODAY)
    assert merged.amount == 5
    assert merged.amount_source == "ai"


def test_ai_amount_dropped_when_text_does_not_back_it(parser):
    ai = ParsedIntent(type="expense", amount=3, amount_source="ai")
    merged = merge("十月 第三次 買咖啡", ai, parser, today=TODAY)
    assert merged.amount is None
    assert merged.amount_source is None
    assert merged.note == "十月 第三次 買咖啡"


def test_missing_ai_fields_fall_back_to_local(parser):
    ai = ParsedIntent(type="expense", amount=120, amount_source="ai", note="coffee")
    merged = merge("昨天 咖啡 120 元", ai, parser, today=TODAY)
    assert merged.date == "2025-10-14"
    assert merged.currency == "TWD"
    assert merged.category_name == "餐飲"
    assert merged.note == "coffee"


def test_no_ai_result_is_the_local_parse(parser):
    merged = merge("午餐 80 元", None, parser, today=TODAY)
    assert merged == parser.parse("午餐 80 元", today=TODAY)


def test_rate_in_text_overrides_ai(parser):
    ai = ParsedIntent(type="expense", amount=100, currency="USD", rate=30, amount_source="ai")
    merged = merge("美金 100 匯率 31.5 機票", ai, parser, today=TODAY)
    assert merged.rate == 31.5


def test_ai_rate_fills_the_gap(parser):
    ai = ParsedIntent(type="expense", amount=30, currency="USD", rate=32, amount_source="ai")
    merged = merge("USD 30 lunch", ai, parser, today=TODAY)
    assert merged.rate == 32
