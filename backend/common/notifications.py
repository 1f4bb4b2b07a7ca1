from typing import Optional

from common.config_versions import TelegramConfig
from common.errors import NotLinked
from common.telegram import escape_html


def compose_task_notification(link: TelegramConfig, title: str, summary: Optional[str] = None) -> Optional[str]:
    """
    Build the task-completed message, or None when notifications are off.
    Raises NotLinked when notifications are on but no chat is linked.
    """
    if not link.notifications_enabled or not link.notify_on_task_done:
        return None
    if link.chat_id is None:
        raise NotLinked()

    message = f"✅ <b>Task Completed</b>\n\n<b>{escape_html(title)}</b>"
    if link.include_llm_summary and summary:
        message += f"\n\n<b>Summary:</b>\n{escape_html(summary)}"
    return message
