from loguru import logger

from talkledger.dialogs.actions import AiConfirmAction, encode_action
from talkledger.dialogs.base import SAVE_FAILED, Dialog, fmt, yes_no
from talkledger.dialogs.store import PendingActionStore
from talkledger.errors import StoreFailure, ValidationFailure
from talkledger.ledger import make_transaction
from talkledger.models.schemas import Button, DialogState, PendingAiAction, Reply

AWAITING_CONFIRM = "awaiting_confirm"
ALREADY_HANDLED = "That request was already handled."


def describe(action: PendingAiAction) -> str:
    p = action.payload
    amount = fmt(float(p.get("amount") or 0))
    if action.kind == "delete_tx":
        return f"Delete {p.get('date')} {p.get('type')} {amount} {p.get('currency', '')} {p.get('note', '')}".rstrip() + "?"
    text = f"Record {p['type']} {amount} {p['currency']} on {p['date']} [{p['category_id']}]"
    if p.get("claim_amount"):
        text += f", claim {fmt(float(p['claim_amount']))}"
    if p.get("note"):
        text += f": {p['note']}"
    return text + "?"


class AiConfirmDialog(Dialog):
    """Confirm an AI-proposed write; the pending action is consumed once."""

    kind = "ai_confirm"
    flow = "ai"

    def __init__(self, *args, pending: PendingActionStore, **kwargs):
        super().__init__(*args, **kwargs)
        self.pending = pending

    async def start(self, user_id: str, action: PendingAiAction) -> Reply:
        state = self.begin(user_id, AWAITING_CONFIRM, {"action_id": action.action_id})
        return await self.prompt(state)

    async def prompt(self, state: DialogState, error: str | None = None) -> Reply:
        action_id = state.draft["action_id"]
        action = self.pending.peek(action_id)
        if action is None:
            self.finish(state)
            return Reply(text=ALREADY_HANDLED)
        text = describe(action)
        if error:
            text = f"{error}\n{text}"
        return Reply(
            text=text,
            buttons=[[
                Button(label="Confirm", data=encode_action(self.flow, "confirm", id=action_id)),
                Button(label="Cancel", data=encode_action(self.flow, "cancel", id=action_id)),
            ]],
        )

    async def handle_text(self, state: DialogState, text: str) -> Reply:
        answer = yes_no(text)
        if answer is None:
            return await self.prompt(state, error="Please confirm or cancel.")
        if answer:
            return await self.confirm(state.user_id, state.draft["action_id"], state)
        return self.reject(state.user_id, state.draft["action_id"], state)

    async def resolve(self, user_id: str, state: DialogState | None, action: AiConfirmAction) -> Reply:
        """Button press. Works without a live dialog, since the pending action carries the request."""
        action_id = action.id or (state.draft.get("action_id") if state else None)
        if not action_id:
            return Reply(text=ALREADY_HANDLED)
        # Only close the dialog if it belongs to this very proposal
        if state is not None and state.draft.get("action_id") != action_id:
            state = None
        if action.is_cancel:
            return self.reject(user_id, action_id, state)
        if action.step == "confirm":
            return await self.confirm(user_id, action_id, state)
        return await self.prompt(state) if state else Reply(text=ALREADY_HANDLED)

    def cancel(self, state: DialogState) -> Reply:
        return self.reject(state.user_id, state.draft["action_id"], state)

    def reject(self, user_id: str, action_id: str, state: DialogState | None) -> Reply:
        taken = self.pending.take(action_id, user_id)
        if state is not None:
            self.finish(state)
        return Reply(text="Cancelled." if taken else ALREADY_HANDLED)

    async def confirm(self, user_id: str, action_id: str, state: DialogState | None) -> Reply:
        action = self.pending.take(action_id, user_id)
        if action is None:
            if state is not None:
                self.finish(state)
            return Reply(text=ALREADY_HANDLED)

        try:
            reply = await self._execute(action)
        except StoreFailure as e:
            logger.error("AI action {} for {} failed: {}", action_id, user_id, e)
            self.pending.restore(action)
            if state is None:
                state = self.begin(user_id, AWAITING_CONFIRM, {"action_id": action_id})
            return await self.prompt(state, error=SAVE_FAILED)
        except ValidationFailure as e:
            if state is not None:
                self.finish(state)
            return Reply(text=f"Could not record that: {e}")

        if state is not None:
            self.finish(state)
        return reply

    async def _execute(self, action: PendingAiAction) -> Reply:
        if action.kind == "delete_tx":
            deleted = await self.ledger.delete(action.user_id, action.payload["id"])
            return Reply(text="Deleted." if deleted else "That transaction no longer exists.")

        tx = make_transaction(**action.payload)
        saved = await self.ledger.record(action.user_id, tx, dedup=True)
        if saved is None:
            return Reply(text="Skipped: the same record was just saved.")
        return Reply(text=f"Saved {saved.type} {fmt(saved.amount)} {saved.currency} on {saved.date} [{saved.category_id}]")
