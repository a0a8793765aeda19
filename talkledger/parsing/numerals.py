"""Chinese numeral words to integers.

Handles the positional base-10 system with magnitude words (十 百 千 萬 億),
formal variants (壹 貳 拾 佰 仟 ...) and the colloquial shorthand where a
trailing digit takes the next lower magnitude (兩千五 = 2500, 三百八 = 380).
"""

DIGITS = {
    "零": 0, "〇": 0,
    "一": 1, "壹": 1, "幺": 1,
    "二": 2, "兩": 2, "两": 2, "貳": 2, "贰": 2,
    "三": 3, "參": 3, "叁": 3,
    "四": 4, "肆": 4,
    "五": 5, "伍": 5,
    "六": 6, "陸": 6, "陆": 6,
    "七": 7, "柒": 7,
    "八": 8, "捌": 8,
    "九": 9, "玖": 9,
}

SMALL_UNITS = {
    "十": 10, "拾": 10,
    "百": 100, "佰": 100,
    "千": 1000, "仟": 1000,
}

LARGE_UNITS = {
    "萬": 10_000, "万": 10_000,
    "億": 100_000_000, "亿": 100_000_000,
}

NUMERAL_CHARS = "".join([*DIGITS, *SMALL_UNITS, *LARGE_UNITS])


def is_numeral_word(text: str) -> bool:
    return bool(text) and all(ch in NUMERAL_CHARS for ch in text)


def chinese_to_int(text: str) -> int | None:
    """Convert a run of Chinese numeral characters to an int, or None if malformed."""
    if not is_numeral_word(text):
        return None

    # A bare digit sequence like 一二三 reads as positional digits
    if all(ch in DIGITS for ch in text):
        value = 0
        for ch in text:
            value = value * 10 + DIGITS[ch]
        return value

    total = 0
    section = 0
    digit: int | None = None
    last_unit = 1
    for ch in text:
        if ch in DIGITS:
            if digit is not None and DIGITS[ch] != 0 and digit != 0:
                return None  # two digits in a row, e.g. 三四百
            digit = DIGITS[ch]
        elif ch in SMALL_UNITS:
            unit = SMALL_UNITS[ch]
            # 十 alone or at the start means 一十
            section += (1 if digit is None else digit) * unit
            digit = None
            last_unit = unit
        else:
            unit = LARGE_UNITS[ch]
            section += digit or 0
            total += (section or 1) * unit
            section = 0
            digit = None
            last_unit = unit

    if digit:
        # 兩千五: a trailing digit right after a magnitude word takes the next lower one
        if last_unit >= 100 and text[-2] not in DIGITS:
            section += digit * (last_unit // 10)
        else:
            section += digit
    return total + section
