"""Task lifecycle: create, read, update, delete, toggle and statistics.

All reads and writes go through ``get_owned_task`` or an equivalent
``owner_id`` clause. A task that exists but belongs to someone else is
reported exactly like a missing one.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import asc, func, not_, update
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import NotFoundError, ValidationError
from ..models import Priority, utcnow
from .queries import TaskPage, TaskQueryEngine

logger = logging.getLogger(__name__)

# ids are 32-bit INTEGER primary keys
MAX_TASK_ID = 2**31 - 1


def _valid_id(task_id: int) -> bool:
    return 1 <= task_id <= MAX_TASK_ID


class TaskService:
    def __init__(self, queries: TaskQueryEngine, clock: Callable[[], datetime] = utcnow) -> None:
        self.queries = queries
        self._clock = clock

    # ------------------------------------------------------------------
    # single-task operations
    # ------------------------------------------------------------------
    def get_owned_task(self, db: Session, owner_id: int, task_id: int) -> models.Task:
        """Load a task owned by ``owner_id`` or raise NotFoundError."""
        if not _valid_id(task_id):
            raise NotFoundError("Task")
        task = (
            db.query(models.Task)
            .filter(models.Task.id == task_id, models.Task.owner_id == owner_id)
            .first()
        )
        if task is None:
            raise NotFoundError("Task")
        return task

    def get(self, db: Session, owner_id: int, task_id: int) -> models.Task:
        return self.get_owned_task(db, owner_id, task_id)

    def create(self, db: Session, owner_id: int, data: schemas.TaskCreate) -> models.Task:
        now = self._clock()
        task = models.Task(
            title=data.title,
            description=data.description,
            priority=data.priority or Priority.MEDIUM,
            due_date=data.due_date,
            completed=False,
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
        )
        db.add(task)
        db.commit()
        db.refresh(task)
        logger.debug("created task id=%s owner=%s", task.id, owner_id)
        return task

    def update(
        self, db: Session, owner_id: int, task_id: int, data: schemas.TaskUpdate
    ) -> models.Task:
        """Apply only the fields present in ``data``.

        An update that names no field is rejected rather than treated as a
        no-op. An explicit null (or empty) due date clears it.
        """
        changes = data.changes()
        if not changes:
            raise ValidationError("No fields provided for update")

        task = self.get_owned_task(db, owner_id, task_id)
        for name, value in changes.items():
            setattr(task, name, value)
        task.updated_at = self._clock()
        db.commit()
        db.refresh(task)
        return task

    def delete(self, db: Session, owner_id: int, task_id: int) -> None:
        task = self.get_owned_task(db, owner_id, task_id)
        db.delete(task)
        db.commit()
        logger.debug("deleted task id=%s owner=%s", task_id, owner_id)

    def toggle(self, db: Session, owner_id: int, task_id: int) -> models.Task:
        """Flip ``completed`` with one conditional UPDATE.

        Concurrent toggles are serialized by the database row write, so two
        toggles always cancel out.
        """
        if not _valid_id(task_id):
            raise NotFoundError("Task")
        stmt = (
            update(models.Task)
            .where(models.Task.id == task_id, models.Task.owner_id == owner_id)
            .values(completed=not_(models.Task.completed), updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        if result.rowcount == 0:
            db.rollback()
            raise NotFoundError("Task")
        db.commit()
        return self.get_owned_task(db, owner_id, task_id)

    # ------------------------------------------------------------------
    # listings
    # ------------------------------------------------------------------
    def list(self, db: Session, owner_id: int, query: schemas.TaskQuery) -> TaskPage:
        return self.queries.run(db, owner_id, query)

    def search(
        self, db: Session, owner_id: int, term: str, page: int = 1, limit: Optional[int] = None
    ) -> TaskPage:
        query = schemas.TaskQuery(search=term, page=page, limit=limit)
        return self.queries.run(db, owner_id, query)

    def by_priority(
        self,
        db: Session,
        owner_id: int,
        priority: Priority,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> TaskPage:
        query = schemas.TaskQuery(priority=priority, page=page, limit=limit)
        return self.queries.run(db, owner_id, query, order=(self.queries.newest_first()))

    def overdue(
        self, db: Session, owner_id: int, page: int = 1, limit: Optional[int] = None
    ) -> TaskPage:
        now = self._clock()
        query = schemas.TaskQuery(completed=False, page=page, limit=limit)
        return self.queries.run(
            db,
            owner_id,
            query,
            extra=(models.Task.due_date.is_not(None), models.Task.due_date < now),
            order=(asc(models.Task.due_date), asc(models.Task.id)),
        )

    def stats(self, db: Session, owner_id: int) -> schemas.TaskStats:
        rows = (
            db.query(models.Task.priority, models.Task.completed, func.count(models.Task.id))
            .filter(models.Task.owner_id == owner_id)
            .group_by(models.Task.priority, models.Task.completed)
            .all()
        )
        by_priority = {p.value: 0 for p in Priority}
        total = completed = 0
        for priority, done, count in rows:
            by_priority[Priority(priority).value] += count
            total += count
            if done:
                completed += count

        overdue = (
            db.query(func.count(models.Task.id))
            .filter(
                models.Task.owner_id == owner_id,
                models.Task.completed.is_(False),
                models.Task.due_date.is_not(None),
                models.Task.due_date < self._clock(),
            )
            .scalar()
        )
        return schemas.TaskStats(
            total=total,
            completed=completed,
            pending=total - completed,
            overdue=overdue or 0,
            by_priority=schemas.PriorityBreakdown(**by_priority),
        )
