import re
from enum import Enum

from loguru import logger

from talkledger.dialogs.actions import NoteAction, ReminderAction, encode_action
from talkledger.dialogs.base import SAVE_FAILED, Dialog, with_error
from talkledger.errors import StoreFailure
from talkledger.models.schemas import Button, DialogState, Note, Reminder, Reply
from talkledger.parsing.text_parser import extract_datetime, normalize_text

TAG_SPLIT_RE = re.compile(r"[,，、\s]+")
TITLE_LENGTH = 30

PRIORITY_WORDS = {
    "low": "low", "低": "low",
    "medium": "medium", "med": "medium", "中": "medium", "普通": "medium",
    "high": "high", "高": "high", "緊急": "high", "urgent": "high",
}


def parse_tags(text: str) -> list[str]:
    tags = [t.lstrip("#") for t in TAG_SPLIT_RE.split(normalize_text(text))]
    return list(dict.fromkeys(t for t in tags if t))


class AddNoteStep(str, Enum):
    CONTENT = "content"
    TAGS = "tags"


class AddNoteDialog(Dialog):
    kind = "add_note"
    flow = "note"

    async def start(self, user_id: str, action: NoteAction | None = None) -> Reply:
        state = self.begin(user_id, AddNoteStep.CONTENT.value, {})
        return await self.prompt(state)

    async def prompt(self, state: DialogState, error: str | None = None) -> Reply:
        if state.step == AddNoteStep.CONTENT.value:
            reply = Reply(text="What should the note say?", buttons=[[self.cancel_button()]])
        else:
            skip = Button(label="No tags", data=encode_action(self.flow, AddNoteStep.TAGS.value, skip="1"))
            reply = Reply(text="Any tags? Separate them with commas, or skip.", buttons=[[skip], [self.cancel_button()]])
        return with_error(reply, error)

    async def handle_text(self, state: DialogState, text: str) -> Reply:
        if state.step == AddNoteStep.CONTENT.value:
            if not text:
                return await self.prompt(state, error="The note cannot be empty.")
            self.advance(state, AddNoteStep.TAGS.value, content=text)
            return await self.prompt(state)
        return await self._complete(state, [] if text == "-" else parse_tags(text))

    async def handle_action(self, state: DialogState, action: NoteAction) -> Reply:
        if state.step == AddNoteStep.TAGS.value and action.skip:
            return await self._complete(state, [])
        if state.step == AddNoteStep.TAGS.value and action.value:
            return await self._complete(state, parse_tags(action.value))
        return await self.prompt(state)

    async def _complete(self, state: DialogState, tags: list[str]) -> Reply:
        content = state.draft["content"]
        note = Note(title=content[:TITLE_LENGTH], content=content, tags=tags)
        try:
            saved = await self.ledger.add_note(state.user_id, note)
        except StoreFailure as e:
            logger.error("Note for {} not saved: {}", state.user_id, e)
            return await self.prompt(state, error=SAVE_FAILED)
        self.finish(state)
        suffix = f" (tags: {', '.join(saved.tags)})" if saved.tags else ""
        return Reply(text=f"Note saved: {saved.title}{suffix}")


class AddReminderStep(str, Enum):
    TITLE = "title"
    DUE = "due"
    PRIORITY = "priority"


class AddReminderDialog(Dialog):
    kind = "add_reminder"
    flow = "reminder"

    async def start(self, user_id: str, action: ReminderAction | None = None) -> Reply:
        state = self.begin(user_id, AddReminderStep.TITLE.value, {})
        return await self.prompt(state)

    def _button(self, label: str, step: AddReminderStep, **params) -> Button:
        return Button(label=label, data=encode_action(self.flow, step.value, **params))

    async def prompt(self, state: DialogState, error: str | None = None) -> Reply:
        step = AddReminderStep(state.step)
        cancel = [self.cancel_button()]
        if step is AddReminderStep.TITLE:
            reply = Reply(text="What should I remind you about?", buttons=[cancel])
        elif step is AddReminderStep.DUE:
            reply = Reply(
                text="When is it due? e.g. 明天 15:30, 2025-11-02, Oct 12. Or skip.",
                buttons=[[self._button("No due date", step, skip="1")], cancel],
            )
        else:
            buttons = [self._button(p.capitalize(), step, value=p) for p in ("low", "medium", "high")]
            reply = Reply(text="Priority?", buttons=[buttons, cancel])
        return with_error(reply, error)

    async def handle_text(self, state: DialogState, text: str) -> Reply:
        step = AddReminderStep(state.step)
        if step is AddReminderStep.TITLE:
            if not text:
                return await self.prompt(state, error="The reminder needs a title.")
            self.advance(state, AddReminderStep.DUE.value, title=text)
            return await self.prompt(state)
        if step is AddReminderStep.DUE:
            return await self._set_due(state, text)
        return await self._set_priority(state, text)

    async def handle_action(self, state: DialogState, action: ReminderAction) -> Reply:
        step = AddReminderStep(state.step)
        if step is AddReminderStep.DUE and action.skip:
            self.advance(state, AddReminderStep.PRIORITY.value, due_at=None)
            return await self.prompt(state)
        if step is AddReminderStep.PRIORITY and action.value:
            return await self._set_priority(state, action.value)
        return await self.prompt(state)

    async def _set_due(self, state: DialogState, text: str) -> Reply:
        if text == "-":
            self.advance(state, AddReminderStep.PRIORITY.value, due_at=None)
            return await self.prompt(state)
        due = extract_datetime(text, self.today())
        if due is None:
            return await self.prompt(state, error="I could not read that date.")
        self.advance(state, AddReminderStep.PRIORITY.value, due_at=due.isoformat())
        return await self.prompt(state)

    async def _set_priority(self, state: DialogState, raw: str) -> Reply:
        priority = PRIORITY_WORDS.get(normalize_text(raw).lower())
        if priority is None:
            return await self.prompt(state, error="Please choose low, medium or high.")
        reminder = Reminder(title=state.draft["title"], due_at=state.draft.get("due_at"), priority=priority)
        try:
            saved = await self.ledger.store.add_reminder(state.user_id, reminder)
        except StoreFailure as e:
            logger.error("Reminder for {} not saved: {}", state.user_id, e)
            return await self.prompt(state, error=SAVE_FAILED)
        self.finish(state)
        due = f" due {saved.due_at:%Y-%m-%d %H:%M}" if saved.due_at else ""
        return Reply(text=f"Reminder set: {saved.title}{due} ({saved.priority})")
