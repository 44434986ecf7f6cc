"""Owner-scoped task listing: filter, search, sort and paginate.

Every query built here starts from ``owner_id == <identity>``; callers can
only narrow it further. Sorting is limited to an allow-list of columns and
page sizes are clamped, so no request can reach another owner's rows or
pull an unbounded result set.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from sqlalchemy import asc, case, desc, or_
from sqlalchemy.orm import Session

from .. import models
from ..models import Priority
from ..schemas import PaginationMeta, SortField, TaskQuery

PRIORITY_RANK = case(
    {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3},
    value=models.Task.priority,
)

SORT_COLUMNS = {
    SortField.CREATED_AT: models.Task.created_at,
    SortField.UPDATED_AT: models.Task.updated_at,
    SortField.DUE_DATE: models.Task.due_date,
    SortField.PRIORITY: PRIORITY_RANK,
    SortField.TITLE: models.Task.title,
}

NEWEST_FIRST = (desc(models.Task.created_at), desc(models.Task.id))


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass
class TaskPage:
    items: List[models.Task]
    meta: PaginationMeta


class TaskQueryEngine:
    def __init__(self, default_limit: int = 10, max_limit: int = 100) -> None:
        self.default_limit = default_limit
        self.max_limit = max_limit

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            limit = self.default_limit
        return max(1, min(int(limit), self.max_limit))

    def build_predicate(self, owner_id: int, query: TaskQuery) -> list:
        """Filter clauses for ``query``; the owner clause is always first."""
        clauses: list = [models.Task.owner_id == owner_id]
        if query.completed is not None:
            clauses.append(models.Task.completed == query.completed)
        if query.priority is not None:
            clauses.append(models.Task.priority == Priority(query.priority))
        if query.search:
            like = f"%{escape_like(query.search.strip())}%"
            clauses.append(
                or_(
                    models.Task.title.ilike(like, escape="\\"),
                    models.Task.description.ilike(like, escape="\\"),
                )
            )
        return clauses

    def newest_first(self) -> tuple:
        return NEWEST_FIRST

    def default_order(self) -> tuple:
        """Incomplete before completed, then newest first."""
        return (asc(models.Task.completed),) + NEWEST_FIRST

    def ordering(self, query: TaskQuery) -> tuple:
        try:
            field = SortField(query.sort_by) if query.sort_by is not None else None
        except ValueError:
            field = None
        if field is None or query.sort_order not in ("asc", "desc"):
            return self.default_order()

        column = SORT_COLUMNS[field]
        primary = desc(column) if query.sort_order == "desc" else asc(column)
        if field is SortField.DUE_DATE:
            primary = primary.nulls_last()
        return (primary,) + NEWEST_FIRST

    def run(
        self,
        db: Session,
        owner_id: int,
        query: TaskQuery,
        *,
        extra: Sequence[Any] = (),
        order: Optional[Sequence[Any]] = None,
    ) -> TaskPage:
        """Count all matches, then fetch the requested page."""
        page = max(1, int(query.page or 1))
        limit = self.clamp_limit(query.limit)

        q = db.query(models.Task).filter(*self.build_predicate(owner_id, query), *extra)
        total = q.count()
        offset = (page - 1) * limit
        # past the last match; also keeps huge page numbers out of the OFFSET
        if offset >= total:
            return TaskPage(items=[], meta=PaginationMeta.build(page, limit, total))
        items = (
            q.order_by(*(order or self.ordering(query)))
            .offset(offset)
            .limit(limit)
            .all()
        )
        return TaskPage(items=items, meta=PaginationMeta.build(page, limit, total))
