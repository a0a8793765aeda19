import math
from collections.abc import Callable
from datetime import date
from typing import Any

from loguru import logger

from talkledger.dialogs.actions import encode_action
from talkledger.dialogs.store import SessionStore
from talkledger.ledger import LedgerService
from talkledger.models.schemas import Button, DialogState, Reply
from talkledger.parsing.text_parser import TextParser, normalize_text

CANCEL_WORDS = {"取消", "算了", "cancel", "stop", "/cancel"}
YES_WORDS = {"是", "要", "有", "好", "對", "yes", "y", "ok"}
NO_WORDS = {"否", "不", "不要", "不用", "沒有", "no", "n", "none"}

SAVE_FAILED = "Could not save right now, please try again."

_amount_parser = TextParser()


def is_cancel(text: str) -> bool:
    return normalize_text(text).lower() in CANCEL_WORDS


def yes_no(text: str) -> bool | None:
    t = normalize_text(text).lower()
    if t in YES_WORDS:
        return True
    if t in NO_WORDS:
        return False
    return None


def parse_positive(text: str | None) -> float | None:
    """A finite amount > 0 from a button value or typed text."""
    t = normalize_text(text or "").replace(",", "")
    try:
        value = float(t)
    except ValueError:
        value = _amount_parser.amount(t)
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    return value


def fmt(value: float) -> str:
    return f"{value:g}" if value != int(value) else f"{int(value)}"


def button_rows(buttons: list[Button], per_row: int = 3) -> list[list[Button]]:
    return [buttons[i:i + per_row] for i in range(0, len(buttons), per_row)]


class Dialog:
    """One guided flow. Subclasses define steps, prompts and input handling."""

    kind: str = ""
    flow: str = ""

    def __init__(self, sessions: SessionStore, ledger: LedgerService, clock: Callable[[], date] = date.today):
        self.sessions = sessions
        self.ledger = ledger
        self.clock = clock

    def cancel_button(self, **params: str) -> Button:
        return Button(label="Cancel", data=encode_action(self.flow, "cancel", **params))

    def begin(self, user_id: str, step: str, draft: dict[str, Any]) -> DialogState:
        # Replaces any earlier dialog of the same kind
        state = DialogState(user_id=user_id, kind=self.kind, step=step, draft=draft)
        self.sessions.set(state)
        logger.info("Dialog {} started for {} at {}", self.kind, user_id, step)
        return state

    def advance(self, state: DialogState, step: str, **updates: Any) -> DialogState:
        state.draft = {**state.draft, **updates}
        state.step = step
        self.sessions.set(state)
        return state

    def finish(self, state: DialogState) -> None:
        self.sessions.delete(state.user_id, state.kind)
        logger.info("Dialog {} finished for {}", self.kind, state.user_id)

    def cancel(self, state: DialogState) -> Reply:
        self.finish(state)
        return Reply(text="Cancelled.")

    def today(self) -> date:
        return self.clock()

    async def start(self, user_id: str, action: Any = None) -> Reply:
        raise NotImplementedError

    async def prompt(self, state: DialogState, error: str | None = None) -> Reply:
        raise NotImplementedError

    async def handle_text(self, state: DialogState, text: str) -> Reply:
        raise NotImplementedError

    async def handle_action(self, state: DialogState, action: Any) -> Reply:
        return await self.prompt(state)

    async def on_text(self, state: DialogState, text: str) -> Reply:
        if is_cancel(text):
            return self.cancel(state)
        return await self.handle_text(state, text.strip())

    async def on_action(self, state: DialogState, action: Any) -> Reply:
        if action.is_cancel:
            return self.cancel(state)
        if action.step != state.step:
            # Stale or re-delivered button: show the current step again
            logger.info("Stale {} postback step {} (current {}) from {}", self.flow, action.step, state.step, state.user_id)
            return await self.prompt(state)
        return await self.handle_action(state, action)


def with_error(reply: Reply, error: str | None) -> Reply:
    if error:
        reply.text = f"{error}\n{reply.text}"
    return reply
