from typing import Optional, Union
from uuid import UUID


class TelegramError(Exception):
    """Base error for the Telegram integration.

    Errors flagged ``user_facing`` are rendered back to the chat as a plain
    reply; everything else is logged by the webhook route.
    """

    user_facing = False
    message = "Telegram integration error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class TelegramApiError(TelegramError):
    def __init__(self, detail: str):
        super().__init__(f"Telegram API error: {detail}")


class NotConfigured(TelegramError):
    message = "Bot token not configured"


class NotLinked(TelegramError):
    message = "Account not linked"


class InvalidLinkToken(TelegramError):
    message = "Invalid link token"


class LinkTokenExpired(TelegramError):
    message = "Link token expired"


class DatabaseError(TelegramError):
    def __init__(self, detail: str):
        super().__init__(f"Database error: {detail}")


class ProjectNotFound(TelegramError):
    user_facing = True

    def __init__(self, project_id: Union[UUID, str]):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class TaskNotFound(TelegramError):
    user_facing = True

    def __init__(self, task_id: Union[UUID, str]):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class NoActiveProject(TelegramError):
    user_facing = True
    message = "No active project set. Use /project <id> to set one."


class InvalidCommand(TelegramError):
    user_facing = True

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)
