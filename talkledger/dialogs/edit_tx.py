from enum import Enum

from loguru import logger

from talkledger.dialogs.actions import EditTxAction, encode_action
from talkledger.dialogs.base import SAVE_FAILED, Dialog, button_rows, fmt, parse_positive, with_error
from talkledger.errors import StoreFailure, ValidationFailure
from talkledger.ledger import find_category
from talkledger.models.schemas import Button, DialogState, Reply
from talkledger.parsing.text_parser import extract_date, normalize_text

FIELDS = {
    "amount": "Amount",
    "date": "Date",
    "category": "Category",
    "note": "Note",
}
FIELD_WORDS = {
    "amount": "amount", "金額": "amount",
    "date": "date", "日期": "date",
    "category": "category", "分類": "category", "類別": "category",
    "note": "note", "備註": "note",
}


class EditTxStep(str, Enum):
    CHOOSE_FIELD = "choose_field"
    AWAITING_VALUE = "awaiting_value"


class EditTxDialog(Dialog):
    kind = "edit_tx"
    flow = "edit"

    async def start(self, user_id: str, action: EditTxAction | None = None) -> Reply:
        tx_id = action.id if action else None
        tx = await self.ledger.store.get_transaction(user_id, tx_id) if tx_id else None
        if tx is None:
            return Reply(text="That transaction was not found.")
        state = self.begin(user_id, EditTxStep.CHOOSE_FIELD.value, {"tx_id": tx.id})
        return await self.prompt(state)

    def _button(self, label: str, step: EditTxStep, **params) -> Button:
        return Button(label=label, data=encode_action(self.flow, step.value, **params))

    async def prompt(self, state: DialogState, error: str | None = None) -> Reply:
        cancel = [self.cancel_button()]
        if state.step == EditTxStep.CHOOSE_FIELD.value:
            buttons = [self._button(label, EditTxStep.CHOOSE_FIELD, field=name) for name, label in FIELDS.items()]
            reply = Reply(text="What do you want to change?", buttons=button_rows(buttons, per_row=2) + [cancel])
        else:
            field = state.draft["field"]
            if field == "category":
                categories = await self.ledger.store.get_categories(state.user_id)
                buttons = [self._button(c.name, EditTxStep.AWAITING_VALUE, value=c.id) for c in categories[:10]]
                reply = Reply(text="Pick the new category.", buttons=button_rows(buttons) + [cancel])
            else:
                hints = {"amount": "a number", "date": "a date like 2025-10-12 or 昨天", "note": "text (- to clear)"}
                reply = Reply(text=f"New {field}? Type {hints[field]}.", buttons=[cancel])
        return with_error(reply, error)

    async def handle_text(self, state: DialogState, text: str) -> Reply:
        if state.step == EditTxStep.CHOOSE_FIELD.value:
            return await self._choose(state, FIELD_WORDS.get(normalize_text(text).lower()))
        return await self._apply(state, text)

    async def handle_action(self, state: DialogState, action: EditTxAction) -> Reply:
        if state.step == EditTxStep.CHOOSE_FIELD.value:
            return await self._choose(state, action.field)
        if action.value is None:
            return await self.prompt(state)
        return await self._apply(state, action.value)

    async def _choose(self, state: DialogState, field: str | None) -> Reply:
        if field not in FIELDS:
            return await self.prompt(state, error="Please pick a field.")
        self.advance(state, EditTxStep.AWAITING_VALUE.value, field=field)
        return await self.prompt(state)

    async def _validate(self, state: DialogState, raw: str) -> dict | None:
        field = state.draft["field"]
        if field == "amount":
            value = parse_positive(raw)
            return {"amount": value} if value is not None else None
        if field == "date":
            value = extract_date(raw, self.today())
            return {"date": value} if value else None
        if field == "category":
            hit = find_category(await self.ledger.store.get_categories(state.user_id), raw)
            return {"category_id": hit.id} if hit else None
        return {"note": "" if raw.strip() == "-" else raw.strip()}

    async def _apply(self, state: DialogState, raw: str) -> Reply:
        updates = await self._validate(state, raw)
        if updates is None:
            return await self.prompt(state, error="That value is not valid.")
        try:
            updated = await self.ledger.update(state.user_id, state.draft["tx_id"], **updates)
        except ValidationFailure as e:
            return await self.prompt(state, error=f"That value is not valid ({e}).")
        except StoreFailure as e:
            logger.error("Edit for {} not saved: {}", state.user_id, e)
            return await self.prompt(state, error=SAVE_FAILED)
        self.finish(state)
        if updated is None:
            return Reply(text="That transaction no longer exists.")
        return Reply(
            text=f"Updated: {updated.date} {updated.type} {fmt(updated.amount)} {updated.currency} "
            f"[{updated.category_id}] {updated.note}".rstrip()
        )
