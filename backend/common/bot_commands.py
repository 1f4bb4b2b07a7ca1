"""Slash-command routing for the Telegram bot.

Each inbound message is parsed into a ``Command`` and handed to one handler.
Handlers raise the user-facing errors from ``common.errors``; the service turns
those into chat replies. Everything interpolated into a reply from user or
project data goes through ``escape_html``.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Union
from uuid import UUID

from common.chat_sessions import ChatSessionStore
from common.config_versions import TelegramConfig
from common.errors import (
    InvalidCommand,
    InvalidLinkToken,
    LinkTokenExpired,
    NoActiveProject,
    ProjectNotFound,
    TaskNotFound,
)
from common.models import TaskStatus
from common.repository import ProjectTaskRepository
from common.telegram import WebhookMessage, escape_html, extract_command

logger = logging.getLogger(__name__)

TASK_LIST_LIMIT = 20
_ID_PREFIX_PATTERN = re.compile(r"^[0-9a-fA-F][0-9a-fA-F-]{7,35}$")

STATUS_EMOJI = {
    TaskStatus.todo: "📋",
    TaskStatus.inprogress: "🔄",
    TaskStatus.inreview: "👀",
    TaskStatus.done: "✅",
    TaskStatus.cancelled: "❌",
}

STATUS_LABEL = {
    TaskStatus.todo: "Todo",
    TaskStatus.inprogress: "In Progress",
    TaskStatus.inreview: "In Review",
    TaskStatus.done: "Done",
    TaskStatus.cancelled: "Cancelled",
}

WELCOME_TEXT = """👋 <b>Welcome to Kanban Bot!</b>

I can help you manage your tasks and receive notifications.

<b>Available commands:</b>
/help - Show all commands
/projects - List your projects
/project &lt;id&gt; - Set active project
/tasks - List tasks in active project
/task &lt;id&gt; - Get task details
/newtask &lt;title&gt; - Create a new task
/message &lt;task_id&gt; &lt;text&gt; - Send message to a task

To link your account, use the link from the web interface."""

HELP_TEXT = """<b>Kanban Bot Commands</b>

<b>Account:</b>
/start - Welcome message &amp; account linking

<b>Projects:</b>
/projects - List all projects
/project &lt;id&gt; - Set active project for subsequent commands

<b>Tasks:</b>
/tasks - List tasks in active project
/tasks &lt;project_id&gt; - List tasks in specific project
/task &lt;id&gt; - Get task details
/newtask &lt;title&gt; - Create task in active project
/newtask &lt;project_id&gt; &lt;title&gt; - Create task in specific project

<b>Messages:</b>
/message &lt;task_id&gt; &lt;text&gt; - Send/queue a message for a task

<b>Notes:</b>
- Task and project IDs are UUIDs (a unique prefix of 8+ characters also works)
- Set an active project with /project to avoid typing IDs"""

INVALID_TOKEN_TEXT = "❌ Invalid or expired link token. Please generate a new link from the web interface."
EXPIRED_TOKEN_TEXT = "❌ This link has expired. Please generate a new link from the web interface."


class Command(str, Enum):
    start = "start"
    help = "help"
    projects = "projects"
    project = "project"
    tasks = "tasks"
    task = "task"
    newtask = "newtask"
    message = "message"
    unknown = "unknown"

    @classmethod
    def parse(cls, name: str) -> "Command":
        try:
            return cls(name)
        except ValueError:
            return cls.unknown


@dataclass(frozen=True)
class Reply:
    text: str


@dataclass(frozen=True)
class NoResponse:
    pass


@dataclass(frozen=True)
class LinkCompleted:
    chat_id: int
    user_id: int
    username: Optional[str]
    link: TelegramConfig


UpdateResult = Union[Reply, NoResponse, LinkCompleted]

CompleteLink = Callable[[str, int, int, Optional[str]], Awaitable[TelegramConfig]]


def _try_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(value)
    except ValueError:
        return None


class CommandDispatcher:
    def __init__(
        self,
        repository: ProjectTaskRepository,
        sessions: ChatSessionStore,
        complete_link: CompleteLink,
    ):
        self.repository = repository
        self.sessions = sessions
        self.complete_link = complete_link
        self._handlers: Dict[Command, Callable[[str, WebhookMessage], Awaitable[UpdateResult]]] = {
            Command.start: self.cmd_start,
            Command.help: self.cmd_help,
            Command.projects: self.cmd_projects,
            Command.project: self.cmd_project,
            Command.tasks: self.cmd_tasks,
            Command.task: self.cmd_task,
            Command.newtask: self.cmd_newtask,
            Command.message: self.cmd_message,
        }

    async def dispatch(self, message: WebhookMessage) -> UpdateResult:
        name, args = extract_command(message.text)
        if name is None:
            # Plain chat text is not handled yet.
            return NoResponse()

        command = Command.parse(name)
        handler = self._handlers.get(command)
        if handler is None:
            return Reply(f"Unknown command: /{escape_html(name)}. Use /help to see available commands.")
        logger.info("Handling /%s for chat %s", command.value, message.chat_id)
        return await handler(args, message)

    # --- Id resolution ---

    async def resolve_project_id(self, raw: str) -> UUID:
        raw = raw.strip()
        project_id = _try_uuid(raw)
        if project_id is not None:
            return project_id
        if not _ID_PREFIX_PATTERN.match(raw):
            raise InvalidCommand(f"Invalid ID format: {raw}. Expected a UUID.")
        matches = await self.repository.find_projects_by_prefix(raw)
        if not matches:
            raise InvalidCommand(f"Invalid ID format: {raw}. Expected a UUID.")
        if len(matches) > 1:
            raise InvalidCommand(f"Ambiguous ID prefix: {raw}. Use more characters.")
        return matches[0].id

    async def resolve_task_id(self, raw: str) -> UUID:
        raw = raw.strip()
        task_id = _try_uuid(raw)
        if task_id is not None:
            return task_id
        if not _ID_PREFIX_PATTERN.match(raw):
            raise InvalidCommand(f"Invalid ID format: {raw}. Expected a UUID.")
        matches = await self.repository.find_tasks_by_prefix(raw)
        if not matches:
            raise InvalidCommand(f"Invalid ID format: {raw}. Expected a UUID.")
        if len(matches) > 1:
            raise InvalidCommand(f"Ambiguous ID prefix: {raw}. Use more characters.")
        return matches[0].id

    def _require_active_project(self, chat_id: int) -> UUID:
        project_id = self.sessions.get_active_project(chat_id)
        if project_id is None:
            raise NoActiveProject()
        return project_id

    # --- Handlers ---

    async def cmd_start(self, args: str, message: WebhookMessage) -> UpdateResult:
        if not args:
            return Reply(WELCOME_TEXT)
        try:
            link = await self.complete_link(args, message.chat_id, message.user_id, message.username)
        except InvalidLinkToken:
            return Reply(INVALID_TOKEN_TEXT)
        except LinkTokenExpired:
            return Reply(EXPIRED_TOKEN_TEXT)
        return LinkCompleted(
            chat_id=message.chat_id,
            user_id=message.user_id,
            username=message.username,
            link=link,
        )

    async def cmd_help(self, args: str, message: WebhookMessage) -> UpdateResult:
        return Reply(HELP_TEXT)

    async def cmd_projects(self, args: str, message: WebhookMessage) -> UpdateResult:
        projects = await self.repository.list_projects()
        if not projects:
            return Reply("No projects found. Create a project in the web interface first.")

        # Unlike /tasks this list is not truncated; long replies are chunked on send.
        lines = ["<b>Your Projects:</b>", ""]
        for project in projects:
            lines.append(f"• <b>{escape_html(project.name)}</b>")
            lines.append(f"  <code>{project.id}</code>")
            lines.append("")
        lines.append("Use /project &lt;id&gt; to set the active project.")
        return Reply("\n".join(lines))

    async def cmd_project(self, args: str, message: WebhookMessage) -> UpdateResult:
        if not args:
            project_id = self._require_active_project(message.chat_id)
            project = await self.repository.get_project(project_id)
            if project is None:
                raise NoActiveProject()
            return Reply(f"Active project: <b>{escape_html(project.name)}</b>\n<code>{project.id}</code>")

        project_id = await self.resolve_project_id(args)
        project = await self.repository.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)

        self.sessions.set_active_project(message.chat_id, project.id)
        return Reply(f"✅ Active project set to: <b>{escape_html(project.name)}</b>")

    async def cmd_tasks(self, args: str, message: WebhookMessage) -> UpdateResult:
        if not args:
            project_id = self._require_active_project(message.chat_id)
        else:
            project_id = await self.resolve_project_id(args)

        project = await self.repository.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)

        tasks = await self.repository.list_tasks(project_id)
        if not tasks:
            return Reply(f"No tasks in project <b>{escape_html(project.name)}</b>.")

        lines = [f"<b>Tasks in {escape_html(project.name)}</b>", ""]
        for task in tasks[:TASK_LIST_LIMIT]:
            lines.append(f"{STATUS_EMOJI[task.status]} <b>{escape_html(task.title)}</b>")
            lines.append(f"  <code>{task.id}</code>")
            lines.append("")
        if len(tasks) > TASK_LIST_LIMIT:
            lines.append(f"... and {len(tasks) - TASK_LIST_LIMIT} more tasks")
        return Reply("\n".join(lines).rstrip("\n"))

    async def cmd_task(self, args: str, message: WebhookMessage) -> UpdateResult:
        if not args:
            return Reply("Usage: /task &lt;task_id&gt;")

        task_id = await self.resolve_task_id(args)
        task = await self.repository.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)

        status = f"{STATUS_EMOJI[task.status]} {STATUS_LABEL[task.status]}"
        text = f"<b>{escape_html(task.title)}</b>\n\nStatus: {status}\nID: <code>{task.id}</code>"
        if task.description:
            text += f"\n\n<b>Description:</b>\n{escape_html(task.description)}"
        return Reply(text)

    async def cmd_newtask(self, args: str, message: WebhookMessage) -> UpdateResult:
        if not args:
            return Reply("Usage: /newtask &lt;title&gt; or /newtask &lt;project_id&gt; &lt;title&gt;")

        parts = args.split(maxsplit=1)
        explicit_id = _try_uuid(parts[0]) if len(parts) == 2 else None
        if explicit_id is not None:
            project_id, title = explicit_id, parts[1].strip()
        else:
            project_id, title = self._require_active_project(message.chat_id), args

        project = await self.repository.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)

        task = await self.repository.create_task(project_id, title, None)
        logger.info("Created task %s in project %s from chat %s", task.id, project_id, message.chat_id)
        return Reply(
            f"✅ Created task in <b>{escape_html(project.name)}</b>:\n\n"
            f"<b>{escape_html(task.title)}</b>\n<code>{task.id}</code>"
        )

    async def cmd_message(self, args: str, message: WebhookMessage) -> UpdateResult:
        usage = Reply("Usage: /message &lt;task_id&gt; &lt;text&gt;")
        parts = args.split(maxsplit=1)
        if len(parts) < 2 or not parts[1].strip():
            return usage

        task_id = await self.resolve_task_id(parts[0])
        task = await self.repository.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)

        # TODO: hand the text to the task's follow-up message queue once it exposes an API.
        return Reply(
            f"📨 Message queued for task <b>{escape_html(task.title)}</b>:\n\n{escape_html(parts[1].strip())}"
        )
