import threading
from typing import Dict, Optional
from uuid import UUID


class ChatSessionStore:
    """Per-chat active project, kept in memory for the process lifetime."""

    def __init__(self):
        self._active_projects: Dict[int, UUID] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._active_projects)

    def get_active_project(self, chat_id: int) -> Optional[UUID]:
        with self._lock:
            return self._active_projects.get(chat_id)

    def set_active_project(self, chat_id: int, project_id: UUID) -> None:
        with self._lock:
            self._active_projects[chat_id] = project_id

    def clear(self, chat_id: int) -> None:
        with self._lock:
            self._active_projects.pop(chat_id, None)
