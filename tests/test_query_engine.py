from datetime import datetime, timedelta, timezone

import pytest

from tasktracker_app import models
from tasktracker_app.models import Priority
from tasktracker_app.schemas import PaginationMeta, SortField, TaskQuery
from tasktracker_app.services.queries import TaskQueryEngine, escape_like

BASE = datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def engine_():
    return TaskQueryEngine(default_limit=10, max_limit=100)


@pytest.fixture()
def seed(db, make_user):
    """
    Insert tasks directly with controlled timestamps.
    """
    def _seed(owner=None, **overrides):
        owner = owner or make_user()

        def _task(title, minutes, **fields):
            stamp = BASE + timedelta(minutes=minutes)
            t = models.Task(title=title, owner_id=owner.id, created_at=stamp, updated_at=stamp, **fields)
            db.add(t)
            return t

        return owner, _task

    return _seed


def _titles(page):
    return [t.title for t in page.items]


def test_clamp_limit(engine_):
    assert engine_.clamp_limit(None) == 10
    assert engine_.clamp_limit(0) == 1
    assert engine_.clamp_limit(-5) == 1
    assert engine_.clamp_limit(500) == 100
    assert engine_.clamp_limit(25) == 25


def test_escape_like():
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


def test_pagination_meta_build():
    meta = PaginationMeta.build(page=2, limit=10, total=25)
    assert meta.total_pages == 3
    assert meta.has_next_page is True
    assert meta.has_prev_page is True

    empty = PaginationMeta.build(page=1, limit=10, total=0)
    assert empty.total_pages == 0
    assert empty.has_next_page is False
    assert empty.has_prev_page is False


def test_second_page_of_twenty_five(db, engine_, seed):
    owner, add = seed()
    for i in range(25):
        add(f"t{i:02d}", i)
    db.commit()

    page = engine_.run(db, owner.id, TaskQuery(page=2, limit=10))
    # newest first: t24..t15 on page 1, t14..t05 on page 2
    assert _titles(page) == [f"t{i:02d}" for i in range(14, 4, -1)]
    assert page.meta.total == 25
    assert page.meta.total_pages == 3


def test_total_ignores_pagination(db, engine_, seed):
    owner, add = seed()
    for i in range(7):
        add(f"x{i}", i, priority=Priority.HIGH if i % 2 else Priority.LOW)
    db.commit()

    query = TaskQuery(priority="HIGH", limit=1)
    for page_no in (1, 2, 3, 4):
        page = engine_.run(db, owner.id, query.model_copy(update={"page": page_no}))
        assert page.meta.total == 3


def test_results_never_cross_owners(db, engine_, seed):
    alice, add_a = seed()
    bob, add_b = seed()
    add_a("alice secret", 1)
    add_b("bob secret", 2)
    db.commit()

    page = engine_.run(db, alice.id, TaskQuery(search="secret"))
    assert _titles(page) == ["alice secret"]


def test_due_date_sort_puts_nulls_last(db, engine_, seed):
    owner, add = seed()
    add("no date", 0)
    add("late", 1, due_date=BASE + timedelta(days=9))
    add("early", 2, due_date=BASE + timedelta(days=1))
    db.commit()

    asc_page = engine_.run(db, owner.id, TaskQuery(sort_by="dueDate", sort_order="asc"))
    assert _titles(asc_page) == ["early", "late", "no date"]
    desc_page = engine_.run(db, owner.id, TaskQuery(sort_by="due_date", sort_order="desc"))
    assert _titles(desc_page) == ["late", "early", "no date"]


def test_sort_needs_both_field_and_order(db, engine_, seed):
    owner, add = seed()
    add("b", 0)
    add("a", 1)
    db.commit()

    # without an order the default (pending first, newest first) applies
    page = engine_.run(db, owner.id, TaskQuery(sort_by=SortField.TITLE))
    assert _titles(page) == ["a", "b"]
    page = engine_.run(db, owner.id, TaskQuery(sort_by=SortField.TITLE, sort_order="asc"))
    assert _titles(page) == ["a", "b"]
    page = engine_.run(db, owner.id, TaskQuery(sort_by=SortField.TITLE, sort_order="desc"))
    assert _titles(page) == ["b", "a"]


def test_unknown_sort_field_falls_back_to_default(db, engine_, seed):
    owner, add = seed()
    add("done old", 0, completed=True)
    add("pending old", 1)
    add("pending new", 2)
    db.commit()

    query = TaskQuery.model_construct(sort_by="owner_id", sort_order="asc", page=1, limit=None)
    assert _titles(engine_.run(db, owner.id, query)) == ["pending new", "pending old", "done old"]


def test_ties_break_on_newest(db, engine_, seed):
    owner, add = seed()
    add("same-1", 0, priority=Priority.HIGH)
    add("same-2", 5, priority=Priority.HIGH)
    add("low", 10, priority=Priority.LOW)
    db.commit()

    page = engine_.run(db, owner.id, TaskQuery(sort_by="priority", sort_order="desc"))
    assert _titles(page) == ["same-2", "same-1", "low"]


def test_extra_clauses_and_custom_order(db, engine_, seed):
    owner, add = seed()
    add("a", 0, completed=True)
    add("b", 1)
    db.commit()

    page = engine_.run(
        db,
        owner.id,
        TaskQuery(),
        extra=(models.Task.completed.is_(True),),
        order=engine_.newest_first(),
    )
    assert _titles(page) == ["a"]
    assert page.meta.total == 1


def test_page_beyond_total_skips_the_fetch(db, engine_, seed):
    owner, add = seed()
    for i in range(3):
        add(f"p{i}", i)
    db.commit()

    page = engine_.run(db, owner.id, TaskQuery(page=10**20, limit=2))
    assert page.items == []
    assert page.meta.total == 3
    assert page.meta.has_next_page is False
    assert page.meta.has_prev_page is True

    # last partial page still returns what is left
    assert _titles(engine_.run(db, owner.id, TaskQuery(page=2, limit=2))) == ["p0"]
