from datetime import date

from loguru import logger

from talkledger.models.schemas import ParsedIntent
from talkledger.parsing.text_parser import TextParser

# Fields where the AI value wins and the local value only fills a gap
FALLBACK_FIELDS = ("type", "currency", "rate", "date", "category_name", "claim_amount", "claimed", "motivation", "emotion")


def merge(
    text: str,
    ai_result: ParsedIntent | None,
    parser: TextParser,
    today: date | None = None,
) -> ParsedIntent:
    """Combine the AI parse with the deterministic one for the same text.

    A locally found amount always wins. An AI-only amount survives only when
    the text holds that exact number beside a unit word or currency token.
    """
    local = parser.parse(text, today=today)
    if ai_result is None:
        return local

    merged = ai_result.model_copy()

    if local.amount is not None:
        if ai_result.amount is not None and ai_result.amount != local.amount:
            logger.info("Local amount {} overrides AI amount {}", local.amount, ai_result.amount)
        merged.amount = local.amount
        merged.amount_source = "local"
    elif ai_result.amount is not None and ai_result.amount in parser.unit_amounts(text):
        merged.amount_source = "ai"
    else:
        if ai_result.amount is not None:
            logger.info("Dropping AI amount {}: not backed by the text", ai_result.amount)
        merged.amount = None
        merged.amount_source = None

    # A rate written in the text is exact, like the amount
    if local.rate is not None:
        merged.rate = local.rate

    for field in FALLBACK_FIELDS:
        if getattr(merged, field) is None:
            setattr(merged, field, getattr(local, field))
    if not merged.note:
        merged.note = local.note
    return merged
