from enum import Enum

from loguru import logger

from talkledger.dialogs.actions import AddTxAction, encode_action
from talkledger.dialogs.base import (
    SAVE_FAILED,
    Dialog,
    button_rows,
    fmt,
    parse_positive,
    with_error,
    yes_no,
)
from talkledger.errors import StoreFailure, ValidationFailure
from talkledger.ledger import find_category, make_transaction
from talkledger.models.schemas import Button, DialogState, Reply

QUICK_AMOUNTS = [50, 100, 150, 200, 300, 500]
CLAIM_RATIOS = [1.0, 0.8, 0.5]
MAX_CATEGORY_BUTTONS = 10


class AddTxStep(str, Enum):
    AMOUNT = "amount"
    CLAIM_ASK = "claim_ask"
    CLAIM_AMOUNT = "claim_amount"
    CATEGORY = "cat"
    NOTE = "note"


class AddTxDialog(Dialog):
    """Guided entry: amount, claim question, optional claim amount, category, note."""

    kind = "add_tx"
    flow = "add"

    def __init__(self, *args, default_currency: str = "TWD", **kwargs):
        super().__init__(*args, **kwargs)
        self.default_currency = default_currency

    async def start(self, user_id: str, action: AddTxAction | None = None) -> Reply:
        draft = {
            "type": (action.type if action and action.type else "expense"),
            "currency": self.default_currency,
            "rate": 1.0,
            "date": self.today().isoformat(),
            "claim_amount": 0.0,
        }
        state = self.begin(user_id, AddTxStep.AMOUNT.value, draft)
        return await self.prompt(state)

    def _button(self, label: str, step: AddTxStep, **params) -> Button:
        return Button(label=label, data=encode_action(self.flow, step.value, **params))

    async def prompt(self, state: DialogState, error: str | None = None) -> Reply:
        step = AddTxStep(state.step)
        draft = state.draft
        cancel = [self.cancel_button()]

        if step is AddTxStep.AMOUNT:
            label = "income" if draft.get("type") == "income" else "expense"
            buttons = [self._button(str(a), step, value=a) for a in QUICK_AMOUNTS]
            reply = Reply(
                text=f"New {label}: how much? Pick an amount or type one.",
                buttons=button_rows(buttons) + [cancel],
            )
        elif step is AddTxStep.CLAIM_ASK:
            reply = Reply(
                text=f"Amount {fmt(draft['amount'])}. Does any of it need to be claimed (reimbursed)?",
                buttons=[[self._button("Yes", step, ans="yes"), self._button("No", step, ans="no")], cancel],
            )
        elif step is AddTxStep.CLAIM_AMOUNT:
            suggestions = sorted({round(draft["amount"] * r, 2) for r in CLAIM_RATIOS}, reverse=True)
            buttons = [self._button(fmt(v), step, value=v) for v in suggestions]
            reply = Reply(text="How much to claim? Pick one or type an amount.", buttons=[buttons, cancel])
        elif step is AddTxStep.CATEGORY:
            categories = await self.ledger.store.get_categories(state.user_id)
            buttons = [self._button(c.name, step, id=c.id) for c in categories[:MAX_CATEGORY_BUTTONS]]
            reply = Reply(text="Which category?", buttons=button_rows(buttons) + [cancel])
        else:
            reply = Reply(
                text="Add a note, or skip. (Type - for no note.)",
                buttons=[[self._button("Skip", step, skip="1")], cancel],
            )
        return with_error(reply, error)

    async def handle_text(self, state: DialogState, text: str) -> Reply:
        step = AddTxStep(state.step)
        if step is AddTxStep.AMOUNT:
            return await self._set_amount(state, text)
        if step is AddTxStep.CLAIM_ASK:
            answer = yes_no(text)
            if answer is None:
                return await self.prompt(state, error="Please answer yes or no.")
            return await self._claim_answer(state, answer)
        if step is AddTxStep.CLAIM_AMOUNT:
            return await self._set_claim(state, text)
        if step is AddTxStep.CATEGORY:
            return await self._set_category(state, text)
        return await self._complete(state, "" if text == "-" else text)

    async def handle_action(self, state: DialogState, action: AddTxAction) -> Reply:
        step = AddTxStep(state.step)
        if step is AddTxStep.AMOUNT:
            return await self._set_amount(state, action.value)
        if step is AddTxStep.CLAIM_ASK:
            if action.ans is None:
                return await self.prompt(state)
            return await self._claim_answer(state, action.ans == "yes")
        if step is AddTxStep.CLAIM_AMOUNT:
            return await self._set_claim(state, action.value)
        if step is AddTxStep.CATEGORY:
            return await self._set_category(state, action.id)
        if action.skip:
            return await self._complete(state, "")
        if action.value is not None:
            return await self._complete(state, "" if action.value == "-" else action.value)
        return await self.prompt(state)

    async def _set_amount(self, state: DialogState, raw: str | None) -> Reply:
        amount = parse_positive(raw)
        if amount is None:
            return await self.prompt(state, error="Please enter an amount greater than 0.")
        self.advance(state, AddTxStep.CLAIM_ASK.value, amount=amount)
        return await self.prompt(state)

    async def _claim_answer(self, state: DialogState, wants_claim: bool) -> Reply:
        if wants_claim:
            self.advance(state, AddTxStep.CLAIM_AMOUNT.value)
        else:
            self.advance(state, AddTxStep.CATEGORY.value, claim_amount=0.0)
        return await self.prompt(state)

    async def _set_claim(self, state: DialogState, raw: str | None) -> Reply:
        claim = parse_positive(raw)
        if claim is None:
            return await self.prompt(state, error="Please enter a claim amount greater than 0.")
        self.advance(state, AddTxStep.CATEGORY.value, claim_amount=claim)
        return await self.prompt(state)

    async def _set_category(self, state: DialogState, raw: str | None) -> Reply:
        categories = await self.ledger.store.get_categories(state.user_id)
        hit = find_category(categories, raw)
        if hit is None:
            return await self.prompt(state, error="Please pick one of the categories.")
        self.advance(state, AddTxStep.NOTE.value, category_id=hit.id)
        return await self.prompt(state)

    async def _complete(self, state: DialogState, note: str) -> Reply:
        draft = state.draft
        try:
            tx = make_transaction(
                date=draft["date"],
                type=draft["type"],
                category_id=draft["category_id"],
                currency=draft["currency"],
                rate=draft["rate"],
                amount=draft["amount"],
                claim_amount=draft.get("claim_amount", 0.0),
                note=note.strip(),
            )
            # Guided entries are deliberate; no dedup window here
            saved = await self.ledger.record(state.user_id, tx, dedup=False)
        except ValidationFailure as e:
            return await self.prompt(state, error=f"That does not look right ({e}).")
        except StoreFailure as e:
            logger.error("Guided entry for {} not saved: {}", state.user_id, e)
            return await self.prompt(state, error=SAVE_FAILED)

        self.finish(state)
        text = f"Saved {saved.type} {fmt(saved.amount)} {saved.currency} on {saved.date} [{saved.category_id}]"
        if saved.claim_amount:
            text += f", claim {fmt(saved.claim_amount)}"
        if saved.note:
            text += f": {saved.note}"
        return Reply(text=text)
