# bundleshop/handlers/base_handler.py
from functools import wraps
from telegram import Update
from telegram.ext import ContextTypes
from ..config import Config
from ..utils.keyboards import Keyboards
from ..utils.messages import Messages


def admin_only(handler):
    """Reject callers whose Telegram id is not in ADMIN_IDS"""
    @wraps(handler)
    async def wrapper(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self.is_admin(update.effective_user.id):
            if update.callback_query:
                await update.callback_query.answer("⛔️ Access denied", show_alert=True)
            else:
                await update.effective_message.reply_text("⛔️ You do not have access to this section.")
            return
        return await handler(self, update, context)
    return wrapper


class BaseHandler:
    """Shared helpers for the Telegram handlers"""
    def __init__(self):
        self.keyboards = Keyboards()
        self.messages = Messages()

    async def is_admin(self, user_id: int) -> bool:
        return user_id in Config.ADMIN_IDS

    @staticmethod
    async def reply(update: Update, text: str, **kwargs):
        if update.callback_query:
            await update.callback_query.answer()
            await update.callback_query.edit_message_text(text, **kwargs)
        else:
            await update.effective_message.reply_text(text, **kwargs)
