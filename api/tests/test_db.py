import logging

import pytest
from sqlalchemy import func, select

from spinwheel.db import atomic
from spinwheel.models import Prize


def _prize_count(session_factory) -> int:
    with session_factory() as s:
        return s.scalar(select(func.count(Prize.id)))


def test_atomic_commits_on_exit(db, session_factory):
    with atomic(db):
        db.add(Prize(name="Airtime", type="Airtime"))
    assert _prize_count(session_factory) == 1


def test_atomic_rolls_back_on_error(db, session_factory):
    with pytest.raises(RuntimeError):
        with atomic(db):
            db.add(Prize(name="Airtime", type="Airtime"))
            db.flush()
            raise RuntimeError("boom")
    assert _prize_count(session_factory) == 0


def test_atomic_discards_work_pending_before_the_scope(db, session_factory, caplog):
    db.add(Prize(name="Stray", type="Airtime"))
    db.flush()

    with caplog.at_level(logging.DEBUG, logger="spinwheel.db"):
        with atomic(db):
            db.add(Prize(name="Airtime", type="Airtime"))

    assert "rolling back transaction opened before the scope" in caplog.text
    with session_factory() as s:
        assert s.scalars(select(Prize.name)).all() == ["Airtime"]
