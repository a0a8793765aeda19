from collections.abc import Callable
from datetime import date

from loguru import logger

from talkledger.dialogs.actions import FLOW_KINDS, Action, AiConfirmAction
from talkledger.dialogs.add_tx import AddTxDialog
from talkledger.dialogs.admin import AdminBroadcastDialog, Broadcaster
from talkledger.dialogs.ai_confirm import AiConfirmDialog
from talkledger.dialogs.base import Dialog
from talkledger.dialogs.edit_tx import EditTxDialog
from talkledger.dialogs.notes import AddNoteDialog, AddReminderDialog
from talkledger.dialogs.store import PendingActionStore, SessionStore
from talkledger.ledger import LedgerService
from talkledger.models.schemas import PendingAiAction, Reply
from talkledger.parsing.text_parser import normalize_text

# Exact phrases that open a guided flow from free text
TRIGGERS = {
    "記一筆": "add", "快速記帳": "add", "新增": "add", "記帳": "add", "add": "add",
    "記事": "note", "新增記事": "note", "筆記": "note", "note": "note",
    "提醒": "reminder", "新增提醒": "reminder", "reminder": "reminder", "remind me": "reminder",
    "廣播": "admin", "broadcast": "admin",
}


class DialogEngine:
    """Routes postbacks by flow tag and free text to the user's most recent dialog."""

    def __init__(
        self,
        sessions: SessionStore,
        ledger: LedgerService,
        pending: PendingActionStore,
        default_currency: str = "TWD",
        admin_user_ids: list[str] | None = None,
        broadcaster: Broadcaster | None = None,
        clock: Callable[[], date] = date.today,
    ):
        self.sessions = sessions
        self.pending = pending
        self.ai_confirm = AiConfirmDialog(sessions, ledger, clock, pending=pending)
        self.admin = AdminBroadcastDialog(
            sessions, ledger, clock, admin_user_ids=admin_user_ids, broadcaster=broadcaster
        )
        dialogs: list[Dialog] = [
            AddTxDialog(sessions, ledger, clock, default_currency=default_currency),
            AddNoteDialog(sessions, ledger, clock),
            AddReminderDialog(sessions, ledger, clock),
            EditTxDialog(sessions, ledger, clock),
            self.ai_confirm,
            self.admin,
        ]
        self.by_flow = {d.flow: d for d in dialogs}
        self.by_kind = {d.kind: d for d in dialogs}

    @staticmethod
    def trigger(text: str) -> str | None:
        return TRIGGERS.get(normalize_text(text).lower())

    def has_active(self, user_id: str) -> bool:
        return bool(self.sessions.active(user_id))

    async def start(self, flow: str, user_id: str) -> Reply:
        return await self.by_flow[flow].start(user_id)

    async def propose(self, user_id: str, kind: str, payload: dict) -> Reply:
        """Park an AI-derived write and ask the user to confirm it."""
        action: PendingAiAction = self.pending.put(user_id, kind, payload)
        logger.info("Pending {} {} for {}", kind, action.action_id, user_id)
        return await self.ai_confirm.start(user_id, action)

    async def handle_text(self, user_id: str, text: str) -> Reply | None:
        """Feed text to the most recently touched dialog; None if the user has none."""
        active = self.sessions.active(user_id)
        if not active:
            return None
        state = active[0]
        return await self.by_kind[state.kind].on_text(state, text)

    async def handle_action(self, user_id: str, action: Action) -> Reply:
        dialog = self.by_flow[action.flow]
        state = self.sessions.get(user_id, FLOW_KINDS[action.flow])

        if isinstance(action, AiConfirmAction):
            return await self.ai_confirm.resolve(user_id, state, action)
        if action.step == "start":
            return await dialog.start(user_id, action)
        if state is None:
            logger.info("Postback {} for {} with no live dialog", action.flow, user_id)
            return Reply(text="That conversation has ended. Start again from the menu.")
        return await dialog.on_action(state, action)
