from pydantic import BaseModel
from typing import Optional
from uuid import UUID

from common.config_versions import TelegramConfig

class TelegramWebhookResponse(BaseModel):
    status: str

class TelegramLinkInfo(BaseModel):
    token: str
    deep_link: str
    bot_configured: bool

class TelegramStatusResponse(BaseModel):
    linked: bool
    username: Optional[str] = None
    notifications_enabled: bool
    notify_on_task_done: bool
    include_llm_summary: bool
    stream_enabled: bool
    bot_configured: bool

    @classmethod
    def from_link(cls, link: TelegramConfig, bot_configured: bool) -> "TelegramStatusResponse":
        return cls(
            linked=link.is_linked,
            username=link.username,
            notifications_enabled=link.notifications_enabled,
            notify_on_task_done=link.notify_on_task_done,
            include_llm_summary=link.include_llm_summary,
            stream_enabled=link.stream_enabled,
            bot_configured=bot_configured,
        )

class TelegramSettingsUpdate(BaseModel):
    notifications_enabled: Optional[bool] = None
    notify_on_task_done: Optional[bool] = None
    include_llm_summary: Optional[bool] = None
    stream_enabled: Optional[bool] = None

class TaskDoneNotificationRequest(BaseModel):
    task_id: UUID
    summary: Optional[str] = None

class TaskDoneNotificationResponse(BaseModel):
    sent: bool
