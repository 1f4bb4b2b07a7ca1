"""Project/task lookups used by the bot.

``ProjectTaskRepository`` is the contract the command handlers depend on;
``SqlAlchemyRepository`` implements it over the async ORM models.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from common.errors import DatabaseError
from common.models import Base, Project, Task, TaskStatus

logger = logging.getLogger(__name__)

# Prefix lookups only need to tell "unique" from "ambiguous".
PREFIX_MATCH_LIMIT = 2


@dataclass(frozen=True)
class ProjectRecord:
    id: UUID
    name: str


@dataclass(frozen=True)
class TaskRecord:
    id: UUID
    project_id: UUID
    title: str
    status: TaskStatus
    description: Optional[str] = None


class ProjectTaskRepository(Protocol):
    """Persistence operations required by the bot commands."""

    async def get_project(self, project_id: UUID) -> Optional[ProjectRecord]:
        ...

    async def find_projects_by_prefix(self, prefix: str) -> List[ProjectRecord]:
        ...

    async def list_projects(self) -> List[ProjectRecord]:
        ...

    async def list_tasks(self, project_id: UUID) -> List[TaskRecord]:
        ...

    async def get_task(self, task_id: UUID) -> Optional[TaskRecord]:
        ...

    async def find_tasks_by_prefix(self, prefix: str) -> List[TaskRecord]:
        ...

    async def create_task(self, project_id: UUID, title: str, description: Optional[str] = None) -> TaskRecord:
        ...


def _project_record(row: Project) -> ProjectRecord:
    return ProjectRecord(id=UUID(row.id), name=row.name)


def _task_record(row: Task) -> TaskRecord:
    return TaskRecord(
        id=UUID(row.id),
        project_id=UUID(row.project_id),
        title=row.title,
        status=row.status,
        description=row.description,
    )


class SqlAlchemyRepository:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def _scalars(self, stmt) -> list:
        try:
            async with self._session_factory() as session:
                return list((await session.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Repository query failed: {e}")
            raise DatabaseError(str(e)) from e

    async def get_project(self, project_id: UUID) -> Optional[ProjectRecord]:
        rows = await self._scalars(select(Project).where(Project.id == str(project_id)))
        return _project_record(rows[0]) if rows else None

    async def find_projects_by_prefix(self, prefix: str) -> List[ProjectRecord]:
        stmt = select(Project).where(Project.id.like(f"{prefix.lower()}%")).limit(PREFIX_MATCH_LIMIT)
        return [_project_record(row) for row in await self._scalars(stmt)]

    async def list_projects(self) -> List[ProjectRecord]:
        stmt = select(Project).order_by(Project.created_at.desc())
        return [_project_record(row) for row in await self._scalars(stmt)]

    async def list_tasks(self, project_id: UUID) -> List[TaskRecord]:
        stmt = select(Task).where(Task.project_id == str(project_id)).order_by(Task.created_at.desc())
        return [_task_record(row) for row in await self._scalars(stmt)]

    async def get_task(self, task_id: UUID) -> Optional[TaskRecord]:
        rows = await self._scalars(select(Task).where(Task.id == str(task_id)))
        return _task_record(rows[0]) if rows else None

    async def find_tasks_by_prefix(self, prefix: str) -> List[TaskRecord]:
        stmt = select(Task).where(Task.id.like(f"{prefix.lower()}%")).limit(PREFIX_MATCH_LIMIT)
        return [_task_record(row) for row in await self._scalars(stmt)]

    async def create_task(self, project_id: UUID, title: str, description: Optional[str] = None) -> TaskRecord:
        row = Task(
            id=str(uuid.uuid4()),
            project_id=str(project_id),
            title=title,
            description=description,
            status=TaskStatus.todo,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                record = _task_record(row)
                await session.commit()
                return record
        except SQLAlchemyError as e:
            logger.error(f"Task creation failed: {e}")
            raise DatabaseError(str(e)) from e

    async def create_project(self, name: str) -> ProjectRecord:
        row = Project(id=str(uuid.uuid4()), name=name)
        try:
            async with self._session_factory() as session:
                session.add(row)
                record = _project_record(row)
                await session.commit()
                return record
        except SQLAlchemyError as e:
            logger.error(f"Project creation failed: {e}")
            raise DatabaseError(str(e)) from e


async def init_db(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
