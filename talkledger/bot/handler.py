from loguru import logger
from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from talkledger.config import get_settings
from talkledger.deps import engine, pipeline
from talkledger.dialogs.actions import encode_action
from talkledger.dialogs.admin import Broadcaster
from talkledger.models.schemas import Reply

settings = get_settings()

USER_PREFIX = "tg:"

HELP_TEXT = (
    "Hi! I keep your ledger.\n\n"
    "Just type what you spent or earned:\n"
    '• "昨天 咖啡 120 元"\n'
    '• "salary 52,000 income"\n'
    '• "計程車 450 請款 450"\n'
    "Several lines (or ; separated) are recorded one by one.\n\n"
    "Ask things like 這月支出, 查帳, 最近交易, 未請款, or any question.\n\n"
    "Commands:\n"
    "/add: guided entry\n"
    "/note: save a note\n"
    "/remind: set a reminder\n"
    "/report: this month at a glance\n"
    "/cancel: stop the current step\n"
    "/help: show this message"
)


def user_id_for(update: Update) -> str:
    return f"{USER_PREFIX}{update.effective_user.id}"


def _markup(reply: Reply) -> InlineKeyboardMarkup | None:
    """Reply buttons as an inline keyboard; postback data goes out verbatim."""
    if not reply.buttons:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(b.label, callback_data=b.data) for b in row] for row in reply.buttons]
    )


async def _send(update: Update, reply: Reply) -> None:
    await update.effective_message.reply_text(reply.text, reply_markup=_markup(reply))


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start and /help."""
    await update.message.reply_text(HELP_TEXT)


async def flow_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """/add, /note, /remind, /broadcast open the matching guided flow."""
    command = update.message.text.split()[0].lstrip("/").split("@")[0]
    flow = {"add": "add", "note": "note", "remind": "reminder", "broadcast": "admin"}[command]
    reply = await pipeline.handle_postback(user_id_for(update), encode_action(flow, "start"))
    await _send(update, reply)


async def report_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await _send(update, await pipeline.handle_message(user_id_for(update), "預算"))


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await _send(update, await pipeline.handle_message(user_id_for(update), "cancel"))


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle incoming text messages, the main conversation entry point."""
    user_text = update.message.text.strip()
    logger.info("Telegram message: {}", user_text)
    await update.message.chat.send_action("typing")
    reply = await pipeline.handle_message(user_id_for(update), user_text)
    await _send(update, reply)


async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Voice notes are only usable when the client sent a caption with them."""
    if not update.message.caption:
        await update.message.reply_text(
            "I received your voice note, but I can't transcribe it yet.\n"
            "Could you type it out instead?"
        )
        return
    reply = await pipeline.handle_message(user_id_for(update), update.message.caption)
    await _send(update, reply)


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Button presses: decode the postback and answer in place of the old keyboard."""
    query = update.callback_query
    await query.answer()
    reply = await pipeline.handle_postback(user_id_for(update), query.data or "")
    try:
        await query.edit_message_text(reply.text, reply_markup=_markup(reply))
    except TelegramError as e:
        # Message may have been deleted or already edited
        logger.debug("Could not edit message, sending instead: {}", e)
        await query.message.reply_text(reply.text, reply_markup=_markup(reply))


def make_broadcaster(bot: Bot) -> Broadcaster:
    async def broadcast(recipients: list[str], text: str) -> int:
        sent = 0
        for recipient in recipients:
            if not recipient.startswith(USER_PREFIX):
                continue
            try:
                await bot.send_message(chat_id=int(recipient[len(USER_PREFIX):]), text=text)
                sent += 1
            except TelegramError as e:
                logger.warning("Broadcast to {} failed: {}", recipient, e)
        return sent

    return broadcast


def build_bot_app() -> Application:
    """Build the Telegram bot application and plug its broadcaster into the admin flow."""
    app = Application.builder().token(settings.telegram_bot_token).build()
    engine.admin.broadcaster = make_broadcaster(app.bot)

    app.add_handler(CommandHandler(["start", "help"], start_command))
    app.add_handler(CommandHandler(["add", "note", "remind", "broadcast"], flow_command))
    app.add_handler(CommandHandler("report", report_command))
    app.add_handler(CommandHandler("cancel", cancel_command))

    app.add_handler(CallbackQueryHandler(handle_callback))

    app.add_handler(MessageHandler(filters.VOICE, handle_voice))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    return app
