"""Typed postback actions.

Button data travels as ``flow=add&step=amount&value=150``; it is decoded once
here into one model per flow and never re-parsed downstream.
"""

from typing import Annotated, Literal
from urllib.parse import parse_qsl, urlencode

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class _Action(BaseModel):
    model_config = ConfigDict(extra="ignore")

    step: str = "start"

    @property
    def is_cancel(self) -> bool:
        return self.step == "cancel"


class AddTxAction(_Action):
    flow: Literal["add"] = "add"
    value: str | None = None
    ans: Literal["yes", "no"] | None = None
    id: str | None = None
    skip: str | None = None
    type: Literal["income", "expense"] | None = None


class NoteAction(_Action):
    flow: Literal["note"] = "note"
    value: str | None = None
    skip: str | None = None


class ReminderAction(_Action):
    flow: Literal["reminder"] = "reminder"
    value: str | None = None
    skip: str | None = None


class EditTxAction(_Action):
    flow: Literal["edit"] = "edit"
    id: str | None = None
    field: Literal["amount", "date", "category", "note"] | None = None
    value: str | None = None


class AiConfirmAction(_Action):
    flow: Literal["ai"] = "ai"
    id: str | None = None


class AdminAction(_Action):
    flow: Literal["admin"] = "admin"


Action = Annotated[
    AddTxAction | NoteAction | ReminderAction | EditTxAction | AiConfirmAction | AdminAction,
    Field(discriminator="flow"),
]

_adapter: TypeAdapter[Action] = TypeAdapter(Action)

# Dialog kind served by each flow tag
FLOW_KINDS = {
    "add": "add_tx",
    "note": "add_note",
    "reminder": "add_reminder",
    "edit": "edit_tx",
    "ai": "ai_confirm",
    "admin": "admin",
}


def decode_action(data: str | dict[str, str]) -> Action | None:
    """Parse postback data into a typed action; None if it is not one we know."""
    if isinstance(data, str):
        fields = dict(parse_qsl(data.strip(), keep_blank_values=False))
    else:
        fields = {str(k): str(v) for k, v in (data or {}).items()}
    try:
        return _adapter.validate_python(fields)
    except ValidationError as e:
        logger.warning("Ignoring malformed postback {!r}: {}", data, e.errors()[0].get("msg"))
        return None


def encode_action(flow: str, step: str, **params: str | float | int | None) -> str:
    pairs = [("flow", flow), ("step", step)]
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        pairs.append((key, str(value)))
    return urlencode(pairs)
