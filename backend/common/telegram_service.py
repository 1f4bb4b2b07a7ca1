"""Telegram bot integration.

One ``TelegramService`` is built per process. It owns the pending link tokens
and the per-chat session context, and shares the config guard with whatever
persists the config to disk.
"""
import logging
from datetime import timedelta
from typing import Optional, Tuple

from common.app_config import ConfigGuard
from common.bot_commands import CommandDispatcher, NoResponse, Reply, UpdateResult
from common.chat_sessions import ChatSessionStore
from common.config_versions import TelegramConfig
from common.errors import NotConfigured, NotLinked, TelegramApiError, TelegramError
from common.link_tokens import LINK_TOKEN_TTL, LinkTokenStore
from common.notifications import compose_task_notification
from common.repository import ProjectTaskRepository, TaskRecord
from common.telegram import WebhookMessage, escape_html, send_message

logger = logging.getLogger(__name__)


class TelegramService:
    def __init__(
        self,
        bot_token: Optional[str],
        config: ConfigGuard,
        repository: ProjectTaskRepository,
        bot_username: Optional[str] = None,
        link_token_ttl: timedelta = LINK_TOKEN_TTL,
    ):
        self.bot_token = bot_token
        self.bot_username = bot_username
        self.config = config
        self.repository = repository
        self.link_tokens = LinkTokenStore(bot_username=bot_username, ttl=link_token_ttl)
        self.sessions = ChatSessionStore()
        self.dispatcher = CommandDispatcher(repository, self.sessions, self.complete_link)

    def is_configured(self) -> bool:
        return bool(self.bot_token)

    # --- Bot API ---

    async def send_message(self, chat_id: int, text: str) -> None:
        if not self.is_configured():
            raise NotConfigured()
        result = await send_message(chat_id, text, bot_token=self.bot_token)
        if not result.get("ok"):
            raise TelegramApiError(str(result.get("error") or result.get("description") or "send failed"))

    async def send_task_notification(self, task: TaskRecord, llm_summary: Optional[str] = None) -> bool:
        """Notify the linked chat that ``task`` finished. Returns whether a message was sent."""
        async with self.config.read() as config:
            link = config.telegram.model_copy()

        text = compose_task_notification(link, task.title, llm_summary)
        if text is None:
            logger.debug("Telegram notifications disabled, skipping task %s", task.id)
            return False
        await self.send_message(link.chat_id, text)
        return True

    # --- Link management ---

    def generate_link_token(self) -> Tuple[str, str]:
        if not self.is_configured():
            raise NotConfigured()
        return self.link_tokens.issue()

    async def complete_link(
        self,
        token: str,
        chat_id: int,
        user_id: int,
        username: Optional[str] = None,
    ) -> TelegramConfig:
        """Redeem ``token`` and record the chat as linked. Returns the new link state."""
        self.link_tokens.redeem(token)

        async with self.config.write() as config:
            config.telegram.chat_id = chat_id
            config.telegram.user_id = user_id
            config.telegram.username = username
            config.telegram.notifications_enabled = True
            config.telegram.notify_on_task_done = True
            link = config.telegram.model_copy()

        logger.info("Telegram chat %s linked (user_id=%s)", chat_id, user_id)
        return link

    async def unlink(self) -> None:
        async with self.config.write() as config:
            config.telegram = TelegramConfig()
        logger.info("Telegram account unlinked")

    async def is_linked(self) -> bool:
        async with self.config.read() as config:
            return config.telegram.is_linked

    async def get_link_status(self) -> TelegramConfig:
        async with self.config.read() as config:
            return config.telegram.model_copy()

    async def update_notification_settings(
        self,
        notifications_enabled: Optional[bool] = None,
        notify_on_task_done: Optional[bool] = None,
        include_llm_summary: Optional[bool] = None,
        stream_enabled: Optional[bool] = None,
    ) -> TelegramConfig:
        async with self.config.write() as config:
            link = config.telegram
            if notifications_enabled and not link.is_linked:
                raise NotLinked()
            if notifications_enabled is not None:
                link.notifications_enabled = notifications_enabled
            if notify_on_task_done is not None:
                link.notify_on_task_done = notify_on_task_done
            if include_llm_summary is not None:
                link.include_llm_summary = include_llm_summary
            if stream_enabled is not None:
                link.stream_enabled = stream_enabled
            return link.model_copy()

    # --- Webhook handling ---

    async def handle_update(self, message: Optional[WebhookMessage]) -> UpdateResult:
        """Run one inbound message through the command dispatcher.

        User-facing command errors come back as a ``Reply``; anything else
        (repository failures, config errors) propagates to the caller.
        """
        if message is None:
            return NoResponse()
        try:
            return await self.dispatcher.dispatch(message)
        except TelegramError as e:
            if not e.user_facing:
                raise
            logger.info("Command from chat %s rejected: %s", message.chat_id, e)
            return Reply(escape_html(str(e)))

    def link_confirmation_text(self, username: Optional[str]) -> str:
        greeting = f", @{escape_html(username)}" if username else ""
        return (
            "✅ <b>Account linked successfully!</b>\n\n"
            f"Welcome{greeting}! You will now receive notifications for task completions."
        )
