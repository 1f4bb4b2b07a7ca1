"""Stable shared fixtures for tests.

Design goal: avoid async fixture loop injection and keep test boundaries explicit.
"""
import os
import tempfile
import uuid
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, patch

import pytest

# Must be set before importing app modules.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_AUTH_BEARER_TOKENS"] = "test_token"
os.environ["APP_ENV"] = "test"
os.environ["CONFIG_PATH"] = os.path.join(tempfile.gettempdir(), f"kanban-test-config-{uuid.uuid4().hex}.json")
os.environ["TELEGRAM_BOT_TOKEN"] = "test_bot_token"
os.environ["TELEGRAM_BOT_USERNAME"] = "kanban_test_bot"
os.environ["TELEGRAM_WEBHOOK_SECRET"] = "test_secret"

from api.main import app, get_telegram_service
from common.app_config import ConfigGuard
from common.models import TaskStatus
from common.repository import ProjectRecord, TaskRecord
from common.telegram_service import TelegramService


class FakeRepository:
    """In-memory stand-in for the project/task repository."""

    def __init__(self):
        self.projects: Dict[uuid.UUID, ProjectRecord] = {}
        self.tasks: Dict[uuid.UUID, TaskRecord] = {}

    def add_project(self, name: str, project_id: Optional[uuid.UUID] = None) -> ProjectRecord:
        project = ProjectRecord(id=project_id or uuid.uuid4(), name=name)
        self.projects[project.id] = project
        return project

    def add_task(
        self,
        project_id: uuid.UUID,
        title: str,
        status: TaskStatus = TaskStatus.todo,
        description: Optional[str] = None,
        task_id: Optional[uuid.UUID] = None,
    ) -> TaskRecord:
        task = TaskRecord(
            id=task_id or uuid.uuid4(),
            project_id=project_id,
            title=title,
            status=status,
            description=description,
        )
        self.tasks[task.id] = task
        return task

    async def get_project(self, project_id):
        return self.projects.get(project_id)

    async def find_projects_by_prefix(self, prefix: str) -> List[ProjectRecord]:
        return [p for p in self.projects.values() if str(p.id).startswith(prefix.lower())][:2]

    async def list_projects(self) -> List[ProjectRecord]:
        return list(self.projects.values())

    async def list_tasks(self, project_id) -> List[TaskRecord]:
        return [t for t in self.tasks.values() if t.project_id == project_id]

    async def get_task(self, task_id):
        return self.tasks.get(task_id)

    async def find_tasks_by_prefix(self, prefix: str) -> List[TaskRecord]:
        return [t for t in self.tasks.values() if str(t.id).startswith(prefix.lower())][:2]

    async def create_task(self, project_id, title, description=None) -> TaskRecord:
        return self.add_task(project_id, title, description=description)


@pytest.fixture
def repo():
    return FakeRepository()


@pytest.fixture
def config_guard():
    return ConfigGuard()


@pytest.fixture
def service(repo, config_guard):
    return TelegramService(
        bot_token="test_bot_token",
        config=config_guard,
        repository=repo,
        bot_username="kanban_test_bot",
    )


@pytest.fixture
def mock_send():
    with patch("common.telegram_service.send_message", new_callable=AsyncMock) as m:
        m.return_value = {"ok": True}
        yield m


@pytest.fixture
def mock_save():
    with patch("api.main.save_config_to_file", new_callable=AsyncMock) as m:
        yield m


@pytest.fixture
def app_with_service(service, mock_send, mock_save):
    app.dependency_overrides[get_telegram_service] = lambda: service
    yield app
    app.dependency_overrides.clear()
