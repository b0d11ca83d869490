"""Task CRUD operations."""
from typing import Any, Dict, Union

from sqlalchemy.ext.asyncio import AsyncSession

from tasksync.crud.base import CRUDBase, _as_dict
from tasksync.models.task import Task
from tasksync.schemas.task import TaskCreate, TaskUpdate
from tasksync.utils.clock import utcnow


class CRUDTask(CRUDBase[Task, TaskCreate, TaskUpdate]):
    """CRUD operations for Task."""

    async def update(
        self,
        db: AsyncSession,
        *,
        db_obj: Task,
        obj_in: Union[TaskUpdate, Dict[str, Any]],
    ) -> Task:
        """Apply a partial update and stamp ``updated_at``."""
        update_data = _as_dict(obj_in, exclude_unset=True)
        update_data["updated_at"] = utcnow()
        return await super().update(db, db_obj=db_obj, obj_in=update_data)


task = CRUDTask(Task)
