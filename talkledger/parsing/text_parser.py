"""Deterministic, offline parser for one line of ledger text.

Extracts type, currency, exchange rate, amount, date, claim flags, category / motivation /
emotion hints and the note. Absence of a field means "unknown", never a guess.
"""

import re
import unicodedata
from datetime import date, datetime, timedelta

from talkledger.models.schemas import ParsedIntent
from talkledger.parsing.numerals import NUMERAL_CHARS, chinese_to_int

INCOME_KEYWORDS = [
    "收入", "入帳", "進帳", "薪水", "薪資", "獎金", "收到", "賺", "退款",
    "income", "salary", "earned", "received", "refund", "bonus", "got paid",
]
EXPENSE_KEYWORDS = [
    "支出", "花費", "花了", "花", "付了", "付", "買", "扣款", "扣", "繳",
    "spent", "spend", "paid", "pay", "bought", "buy", "expense", "cost",
]

# Ordered: specific synonyms before generic ones, first hit wins
CURRENCY_SYNONYMS: list[tuple[str, str]] = [
    ("新台幣", "TWD"), ("新臺幣", "TWD"), ("台幣", "TWD"), ("臺幣", "TWD"),
    ("NT$", "TWD"), ("NTD", "TWD"), ("TWD", "TWD"),
    ("美金", "USD"), ("美元", "USD"), ("US$", "USD"), ("USD", "USD"),
    ("日圓", "JPY"), ("日幣", "JPY"), ("日元", "JPY"), ("円", "JPY"), ("JPY", "JPY"), ("¥", "JPY"),
    ("歐元", "EUR"), ("EUR", "EUR"), ("€", "EUR"),
    ("人民幣", "CNY"), ("RMB", "CNY"), ("CNY", "CNY"),
    ("港幣", "HKD"), ("港元", "HKD"), ("HKD", "HKD"),
    ("英鎊", "GBP"), ("GBP", "GBP"), ("£", "GBP"),
    ("元", "TWD"), ("塊", "TWD"), ("块", "TWD"),
]

UNIT_WORDS = ["塊錢", "块钱", "塊", "块", "元", "圓", "dollars", "dollar", "bucks", "buck"]

CLAIMED_KEYWORDS = ["已請款", "完成請款", "請款完成", "已報帳", "報帳完成", "claimed", "reimbursed"]
UNCLAIMED_KEYWORDS = [
    "未請款", "還沒請款", "尚未請款", "沒請款", "不用請款", "不需請款", "無需請款", "不必請款",
    "unclaimed", "not claimed", "no need to claim", "not yet claimed",
]

CATEGORY_HINTS: list[tuple[str, list[str]]] = [
    ("薪資", ["薪水", "薪資", "salary", "payroll"]),
    ("交通", ["捷運", "公車", "計程車", "高鐵", "火車", "加油", "停車", "uber", "taxi", "bus", "train", "metro", "parking"]),
    ("餐飲", ["早餐", "午餐", "晚餐", "宵夜", "咖啡", "飲料", "便當", "餐", "吃",
              "food", "coffee", "lunch", "dinner", "breakfast", "snack", "meal", "restaurant"]),
    ("購物", ["衣服", "鞋", "網購", "購物", "shopping", "clothes", "shoes"]),
    ("娛樂", ["電影", "遊戲", "唱歌", "movie", "game", "concert", "netflix"]),
    ("醫療", ["看診", "藥", "醫院", "診所", "doctor", "clinic", "pharmacy", "medicine"]),
    ("居家", ["房租", "水費", "電費", "瓦斯", "rent", "electricity", "utilities"]),
]
MOTIVATION_HINTS: list[tuple[str, list[str]]] = [
    ("reward", ["犒賞", "獎勵自己", "reward", "treat myself"]),
    ("social", ["請客", "聚餐", "朋友", "treat", "friends"]),
    ("need", ["必要", "需要", "need", "necessary"]),
    ("want", ["想要", "衝動", "want", "impulse"]),
]
EMOTION_HINTS: list[tuple[str, list[str]]] = [
    ("happy", ["開心", "快樂", "happy", "glad"]),
    ("sad", ["難過", "傷心", "sad"]),
    ("stressed", ["壓力", "焦慮", "stressed", "anxious"]),
    ("tired", ["好累", "疲倦", "tired"]),
    ("regret", ["後悔", "regret"]),
]

RELATIVE_DAYS: list[tuple[str, int]] = [
    ("大前天", -3), ("前天", -2), ("昨天", -1), ("昨日", -1), ("今天", 0), ("今日", 0),
    ("明天", 1), ("後天", 2),
    ("day before yesterday", -2), ("yesterday", -1), ("today", 0), ("tomorrow", 1),
]

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

# ── Regex building blocks ────────────────────────────────────────────

_CN = f"[{NUMERAL_CHARS}]"
_DIGITS = r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?"
_MULT = r"[萬万千]|[kK](?![A-Za-z])"


def _amount(prefix: str = "") -> str:
    return rf"(?:(?P<{prefix}num>{_DIGITS})(?:\s*(?P<{prefix}mult>{_MULT}))?|(?P<{prefix}cn>{_CN}+))"


_AMOUNT = _amount()
_MONTH_NAME = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)


def _token_pattern(token: str) -> str:
    escaped = re.escape(token)
    if token.isascii() and token[0].isalpha():
        escaped = rf"(?<![A-Za-z]){escaped}"
    if token.isascii() and token[-1].isalpha():
        escaped = rf"{escaped}(?![A-Za-z])"
    return escaped


_UNIT_ALT = "|".join(_token_pattern(u) for u in UNIT_WORDS)
_CURRENCY_TOKENS = [s for s, _ in CURRENCY_SYNONYMS if s not in UNIT_WORDS] + ["$"]
_CURRENCY_ALT = "|".join(_token_pattern(s) for s in sorted(_CURRENCY_TOKENS, key=len, reverse=True))

UNIT_AMOUNT_RE = re.compile(rf"(?<![\d.,]){_AMOUNT}\s*(?:{_UNIT_ALT})", re.IGNORECASE)
# Either order; the two sides carry prefixed group names (l_ = code first, r_ = code last)
CURRENCY_AMOUNT_RE = re.compile(
    rf"(?:{_CURRENCY_ALT})\s*{_amount('l_')}|(?<![\d.,]){_amount('r_')}\s*(?:{_CURRENCY_ALT})",
    re.IGNORECASE,
)
BARE_AMOUNT_RE = re.compile(
    rf"(?<![A-Za-z\d.,])(?P<num>{_DIGITS})(?:\s*(?P<mult>{_MULT}))?(?![A-Za-z\d])"
)
CLAIM_RE = re.compile(
    rf"(?:請款|報帳|报销|報銷|claim(?:\s+amount)?)\s*[:=]?\s*(?P<claim>{_AMOUNT})",
    re.IGNORECASE,
)
RATE_RE = re.compile(
    r"(?:匯率|汇率|(?<![A-Za-z])(?:exchange\s+)?rate(?![A-Za-z]))\s*[:=@]?\s*(?P<rate>\d+(?:\.\d+)?)",
    re.IGNORECASE,
)

SCRUB_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r"\d{4}\s*[-/.年]\s*\d{1,2}\s*[-/.月]\s*\d{1,2}\s*[日號号]?",
    r"\d{4}\s*年",
    r"(?<![\d.,/])\d{1,2}\s*/\s*\d{1,2}(?![\d/])",
    r"(?<![\d.,])\d{1,2}\s*月(?:\s*\d{1,2}\s*[日號号]?)?",
    r"(?<![\d.,])\d{1,2}\s*[日號号](?![圓元幣币])",
    r"(?<![\d.,])\d{1,2}\s*:\s*\d{2}(?::\d{2})?",
    r"(?<![\d.,])\d{1,2}\s*(?:am|pm|a\.m\.|p\.m\.)(?![A-Za-z])",
    r"(?<![\d.,])\d{1,2}\s*[點点](?:\s*\d{1,2}\s*分|半|鐘|钟)?",
    r"\d+\s*(?:st|nd|rd|th)(?![A-Za-z])",
    rf"第\s*(?:\d+|{_CN}+)\s*(?:次|個|个|名|天|週|周|期|號|号|筆|笔|杯|回)?",
    rf"(?:\d+|{_CN}+)\s*(?:次|回|遍|times?(?![A-Za-z]))",
    rf"{_CN}{{1,3}}\s*月",
    rf"(?<![A-Za-z]){_MONTH_NAME}\.?\s*\d{{1,2}}(?:st|nd|rd|th)?(?![\d])(?:\s*,?\s*\d{{4}})?",
    rf"(?<![\d.,])\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTH_NAME}(?![A-Za-z])",
    rf"(?<![A-Za-z]){_MONTH_NAME}(?![A-Za-z])",
    rf"(?:\d+|{_CN}+)\s*(?:天|日|週|周|星期|禮拜|礼拜|個月|个月|小時|小时|分鐘|分钟)\s*(?:前|後|后)",
    r"\d+\s*(?:days?|weeks?|months?|hours?|minutes?|mins?)\s+(?:ago|later)(?![A-Za-z])",
    r"打\s*\d+(?:\.\d+)?\s*折|(?<![\d.,])\d{1,2}(?:\.\d+)?\s*折(?!扣)",
    r"\d+(?:\.\d+)?\s*%",
)]

ISO_DATE_RE = re.compile(r"(\d{4})\s*[-/.年]\s*(\d{1,2})\s*[-/.月]\s*(\d{1,2})")
MONTH_DAY_RE = re.compile(r"(?<![\d.,/])(\d{1,2})\s*[/月]\s*(\d{1,2})(?![\d/])")
EN_MONTH_DAY_RE = re.compile(rf"(?<![A-Za-z])({_MONTH_NAME})\.?\s*(\d{{1,2}})(?!\d)", re.IGNORECASE)
EN_DAY_MONTH_RE = re.compile(rf"(?<![\d.,])(\d{{1,2}})(?:st|nd|rd|th)?\s+({_MONTH_NAME})(?![A-Za-z])", re.IGNORECASE)
TIME_RE = re.compile(r"(?<![\d.,])(\d{1,2})\s*:\s*(\d{2})")
DAYS_OFFSET_RE = re.compile(
    rf"(?P<n>\d+|{_CN}+)\s*(?P<unit>天|日|週|周|星期|禮拜|礼拜)\s*(?P<dir>前|後|后)"
    r"|(?P<en_n>\d+)\s*(?P<en_unit>days?|weeks?)\s+(?P<en_dir>ago|later)(?![A-Za-z])",
    re.IGNORECASE,
)


def normalize_text(text: str) -> str:
    """Full-width digits and punctuation to ASCII, collapse whitespace."""
    return re.sub(r"\s+", " ", unicodedata.normalize("NFKC", text or "")).strip()


def contains_keyword(text: str, keyword: str) -> bool:
    """Case-insensitive containment; ASCII keywords must sit on word boundaries."""
    if keyword.isascii():
        return re.search(rf"(?<![A-Za-z]){re.escape(keyword)}(?![A-Za-z])", text, re.IGNORECASE) is not None
    return keyword in text


def _first_hint(text: str, table: list[tuple[str, list[str]]]) -> str | None:
    for label, keywords in table:
        if any(contains_keyword(text, k) for k in keywords):
            return label
    return None


def amount_from_match(match: re.Match, prefix: str = "") -> float | None:
    """Numeric value of an _AMOUNT group set, honouring k / 千 / 萬 multipliers."""
    groups = match.groupdict()
    num = groups.get(f"{prefix}num")
    cn = groups.get(f"{prefix}cn")
    if num:
        value = float(num.replace(",", ""))
        mult = groups.get(f"{prefix}mult")
        if mult:
            value *= {"萬": 10_000, "万": 10_000, "千": 1_000}.get(mult, 1_000)
        return value
    if cn:
        converted = chinese_to_int(cn)
        return float(converted) if converted is not None else None
    return None


def currency_match_value(match: re.Match) -> float | None:
    prefix = "l_" if match.group("l_num") or match.group("l_cn") else "r_"
    return amount_from_match(match, prefix)


def _date_or_none(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _days_offset(match: re.Match) -> int | None:
    """Signed day count of "3天前" / "2 weeks later" style wording."""
    if match.group("en_n"):
        count = int(match.group("en_n"))
        weekly = match.group("en_unit").lower().startswith("week")
        before = match.group("en_dir").lower() == "ago"
    else:
        raw = match.group("n")
        count = int(raw) if raw.isdigit() else chinese_to_int(raw)
        if count is None:
            return None
        weekly = match.group("unit") not in ("天", "日")
        before = match.group("dir") == "前"
    days = count * 7 if weekly else count
    return -days if before else days


def extract_date(text: str, today: date | None = None) -> str | None:
    """ISO date from explicit, month/day or relative-day wording; None when absent."""
    today = today or date.today()
    t = normalize_text(text)

    m = ISO_DATE_RE.search(t)
    if m:
        found = _date_or_none(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if found:
            return found

    m = MONTH_DAY_RE.search(t)
    if m:
        found = _date_or_none(today.year, int(m.group(1)), int(m.group(2)))
        if found:
            return found
    m = EN_MONTH_DAY_RE.search(t)
    if m:
        found = _date_or_none(today.year, MONTHS[m.group(1)[:3].lower()], int(m.group(2)))
        if found:
            return found
    m = EN_DAY_MONTH_RE.search(t)
    if m:
        found = _date_or_none(today.year, MONTHS[m.group(2)[:3].lower()], int(m.group(1)))
        if found:
            return found

    m = DAYS_OFFSET_RE.search(t)
    if m:
        offset = _days_offset(m)
        if offset is not None:
            return (today + timedelta(days=offset)).isoformat()

    for word, offset in RELATIVE_DAYS:
        if contains_keyword(t, word):
            return (today + timedelta(days=offset)).isoformat()
    return None


def extract_time(text: str) -> tuple[int, int] | None:
    m = TIME_RE.search(normalize_text(text))
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


def extract_datetime(text: str, today: date | None = None) -> datetime | None:
    """Date (required) plus optional HH:MM; used by reminder due times."""
    found = extract_date(text, today)
    if not found:
        return None
    hh, mm = extract_time(text) or (9, 0)
    return datetime.strptime(found, "%Y-%m-%d").replace(hour=hh, minute=mm)


def scrub_temporal(text: str) -> str:
    """Blank out date, time, ordinal and count substrings so they are never read as amounts."""
    for pattern in SCRUB_PATTERNS:
        text = pattern.sub(" ", text)
    return text


class TextParser:
    """Layered pattern rules; never raises and never calls out."""

    def parse(self, text: str, today: date | None = None) -> ParsedIntent:
        raw = (text or "").strip()
        t = normalize_text(raw)
        intent = ParsedIntent(note=raw)
        if not t:
            return intent

        intent.type = self._type(t)
        intent.currency = self.currency(t)
        rate = RATE_RE.search(t)
        if rate and float(rate.group("rate")) > 0:
            intent.rate = float(rate.group("rate"))
        intent.amount = self.amount(t)
        if intent.amount is not None:
            intent.amount_source = "local"
        intent.date = extract_date(t, today)

        claim = CLAIM_RE.search(t)
        if claim:
            value = amount_from_match(claim)
            if value is not None and value >= 0:
                intent.claim_amount = value
        if any(contains_keyword(t, k) for k in UNCLAIMED_KEYWORDS):
            intent.claimed = False
        elif any(contains_keyword(t, k) for k in CLAIMED_KEYWORDS):
            intent.claimed = True

        intent.category_name = _first_hint(t, CATEGORY_HINTS)
        intent.motivation = _first_hint(t, MOTIVATION_HINTS)
        intent.emotion = _first_hint(t, EMOTION_HINTS)
        return intent

    def _type(self, t: str) -> str | None:
        if any(contains_keyword(t, k) for k in INCOME_KEYWORDS):
            return "income"
        if any(contains_keyword(t, k) for k in EXPENSE_KEYWORDS):
            return "expense"
        return None

    def currency(self, text: str) -> str | None:
        t = normalize_text(text)
        for synonym, code in CURRENCY_SYNONYMS:
            if contains_keyword(t, synonym):
                return code
        return None

    def amount(self, text: str) -> float | None:
        # The exchange rate is never the amount
        scrubbed = scrub_temporal(RATE_RE.sub(" ", normalize_text(text)))

        for match in UNIT_AMOUNT_RE.finditer(scrubbed):
            value = amount_from_match(match)
            if value and value > 0:
                return value
        for match in CURRENCY_AMOUNT_RE.finditer(scrubbed):
            value = currency_match_value(match)
            if value and value > 0:
                return value

        # Bare numbers: drop the claim phrase first so its number is never the amount
        bare_text = CLAIM_RE.sub(" ", scrubbed)
        candidates = list(BARE_AMOUNT_RE.finditer(bare_text))
        grouped = [m for m in candidates if "," in m.group("num")]
        for match in grouped + candidates:
            value = amount_from_match(match)
            if value and value > 0:
                return value
        return None

    def unit_amounts(self, text: str) -> list[float]:
        """Every number in the raw text sitting next to a unit word or currency token."""
        t = RATE_RE.sub(" ", normalize_text(text))
        values = [amount_from_match(m) for m in UNIT_AMOUNT_RE.finditer(t)]
        values += [currency_match_value(m) for m in CURRENCY_AMOUNT_RE.finditer(t)]
        return [v for v in values if v is not None and v > 0]
