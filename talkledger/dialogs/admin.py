from collections.abc import Awaitable, Callable

from loguru import logger

from talkledger.dialogs.actions import AdminAction
from talkledger.dialogs.base import Dialog
from talkledger.errors import StoreFailure
from talkledger.models.schemas import DialogState, Reply

AWAITING_MESSAGE = "awaiting_message"

# (recipients, text) -> number delivered
Broadcaster = Callable[[list[str], str], Awaitable[int]]


class AdminBroadcastDialog(Dialog):
    """Admin-only: the next message goes out to every known recipient."""

    kind = "admin"
    flow = "admin"

    def __init__(self, *args, admin_user_ids: list[str] | None = None, broadcaster: Broadcaster | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.admin_user_ids = set(admin_user_ids or [])
        self.broadcaster = broadcaster

    def is_admin(self, user_id: str) -> bool:
        return user_id in self.admin_user_ids

    async def start(self, user_id: str, action: AdminAction | None = None) -> Reply:
        if not self.is_admin(user_id):
            logger.warning("Non-admin {} tried to start a broadcast", user_id)
            return Reply(text="Sorry, only admins can do that.")
        state = self.begin(user_id, AWAITING_MESSAGE, {})
        return await self.prompt(state)

    async def prompt(self, state: DialogState, error: str | None = None) -> Reply:
        text = "Send the message to broadcast."
        return Reply(text=f"{error}\n{text}" if error else text, buttons=[[self.cancel_button()]])

    async def handle_text(self, state: DialogState, text: str) -> Reply:
        if not text:
            return await self.prompt(state, error="The message cannot be empty.")
        if self.broadcaster is None:
            self.finish(state)
            return Reply(text="Broadcast is not available on this channel.")
        try:
            recipients = await self.ledger.store.get_recipients()
        except StoreFailure as e:
            logger.error("Broadcast recipients unavailable: {}", e)
            return await self.prompt(state, error="Could not load recipients, please try again.")
        sent = await self.broadcaster(recipients, text)
        self.finish(state)
        logger.info("Admin {} broadcast to {}/{} recipients", state.user_id, sent, len(recipients))
        return Reply(text=f"Broadcast sent to {sent} of {len(recipients)} recipients.")
