import json
import math
import re
from datetime import date
from typing import Any

from loguru import logger

from talkledger.llm.client import CompletionClient, candidate_models
from talkledger.llm.prompts import PARSER_SYSTEM_PROMPT, parser_context
from talkledger.models.schemas import ParsedIntent

STRICT_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MAX_NOTE = 200
MAX_CATEGORY = 40
MAX_HINT = 40


def _finite_positive(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _strict_date(value: Any) -> str | None:
    if not isinstance(value, str) or not STRICT_DATE_RE.match(value.strip()):
        return None
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError:
        return None


def _short(value: Any, limit: int) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text[:limit] or None


def normalize_ai_result(raw: dict[str, Any]) -> ParsedIntent:
    """Clamp whatever the model returned into a ParsedIntent; bad fields become None."""
    kind = str(raw.get("type") or "").strip().lower()
    currency = _short(raw.get("currency"), 8)
    claim_amount = raw.get("claimAmount", raw.get("claim_amount"))
    claimed = raw.get("claimed")
    amount = _finite_positive(raw.get("amount"))
    return ParsedIntent(
        type="income" if kind == "income" else "expense",
        amount=amount,
        currency=currency.upper() if currency else None,
        rate=_finite_positive(raw.get("rate")),
        date=_strict_date(raw.get("date")),
        category_name=_short(raw.get("categoryName", raw.get("category_name")), MAX_CATEGORY),
        claim_amount=_finite_positive(claim_amount),
        claimed=claimed if isinstance(claimed, bool) else None,
        note=_short(raw.get("note"), MAX_NOTE) or "",
        motivation=_short(raw.get("motivation"), MAX_HINT),
        emotion=_short(raw.get("emotion"), MAX_HINT),
        amount_source="ai" if amount is not None else None,
    )


def strip_code_fences(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("```"):
        lines = [line for line in raw.split("\n") if not line.startswith("```")]
        raw = "\n".join(lines)
    return raw.strip()


class AiParser:
    """Structured parse through the completion provider; never raises."""

    def __init__(self, client: CompletionClient, model: str, fallback_models: list[str] | None = None):
        self.client = client
        self.models = candidate_models(model, fallback_models or [])

    async def parse(
        self,
        text: str,
        known_categories: list[str] | None = None,
        today: date | None = None,
    ) -> ParsedIntent | None:
        if not self.client.available or not (text or "").strip():
            return None

        today = today or date.today()
        messages = [
            {"role": "system", "content": PARSER_SYSTEM_PROMPT},
            {"role": "system", "content": parser_context(known_categories or [], today.isoformat())},
            {"role": "user", "content": text},
        ]

        for model in self.models:
            try:
                completion = await self.client.complete(model, messages, json_mode=True)
            except Exception as e:
                logger.warning("AI parse via {} failed: {}", model, e)
                continue

            raw = strip_code_fences(completion.text or "")
            logger.debug("AI parse raw response from {}: {}", model, raw)
            try:
                parsed_json = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning("AI parse via {} returned non-JSON: {}", model, e)
                continue
            if not isinstance(parsed_json, dict):
                logger.warning("AI parse via {} returned {} instead of an object", model, type(parsed_json).__name__)
                continue
            return normalize_ai_result(parsed_json)

        logger.error("AI parse failed on every candidate model: {}", self.models)
        return None
