"""
Data store used by the realtime hub.

The hub only needs a handful of task / user operations, expressed as the
``TaskStore`` protocol. ``SqlAlchemyTaskStore`` fulfils it on top of ``crud``:
every call opens its own session, runs in a worker thread so the event loop
is never blocked on the database, and hands back pydantic models so nothing
the hub holds is bound to a session.
"""

import asyncio
from datetime import datetime
from typing import List, Optional, Protocol

import crud
import database
from schemas import TaskActivityRecord, TaskResponse, TeamMember


class TaskStore(Protocol):
    async def get_task(self, task_id: int) -> Optional[TaskResponse]: ...

    async def update_task_status(
        self,
        task_id: int,
        status: str,
        completed_at: Optional[datetime],
        updated_at: datetime,
    ) -> Optional[TaskResponse]: ...

    async def insert_task_activity(
        self, task_id: int, user_id: int, action: str, created_at: datetime
    ) -> TaskActivityRecord: ...

    async def list_team_members(self) -> List[TeamMember]: ...

    async def count_completed_tasks(self, user_id: int) -> int: ...

    async def count_total_tasks(self, user_id: int) -> int: ...

    async def count_on_time_completed(self, user_id: int) -> int: ...

    async def count_comments(self, user_id: int) -> int: ...

    async def count_activities(self, user_id: int) -> int: ...


class SqlAlchemyTaskStore:
    def __init__(self, session_factory=None):
        self.session_factory = session_factory or database.SessionLocal

    async def _run(self, fn, *args):
        def call():
            with database.session_scope(self.session_factory) as db:
                return fn(db, *args)

        return await asyncio.to_thread(call)

    async def get_task(self, task_id: int) -> Optional[TaskResponse]:
        def fetch(db, task_id):
            task = crud.get_task_by_id(db, task_id)
            return TaskResponse.model_validate(task) if task else None

        return await self._run(fetch, task_id)

    async def update_task_status(self, task_id, status, completed_at, updated_at):
        def update(db, *args):
            task = crud.update_task_status(db, *args)
            return TaskResponse.model_validate(task) if task else None

        return await self._run(update, task_id, status, completed_at, updated_at)

    async def insert_task_activity(self, task_id, user_id, action, created_at):
        def insert(db, *args):
            return TaskActivityRecord.model_validate(crud.create_task_activity(db, *args))

        return await self._run(insert, task_id, user_id, action, created_at)

    async def list_team_members(self) -> List[TeamMember]:
        def fetch(db):
            return [TeamMember.model_validate(user) for user in crud.get_team_members(db)]

        return await self._run(fetch)

    async def count_completed_tasks(self, user_id: int) -> int:
        return await self._run(crud.count_completed_tasks, user_id)

    async def count_total_tasks(self, user_id: int) -> int:
        return await self._run(crud.count_total_tasks, user_id)

    async def count_on_time_completed(self, user_id: int) -> int:
        return await self._run(crud.count_on_time_completed, user_id)

    async def count_comments(self, user_id: int) -> int:
        return await self._run(crud.count_comments, user_id)

    async def count_activities(self, user_id: int) -> int:
        return await self._run(crud.count_activities, user_id)
