# tests/test_db.py
"""
Tests for core.db session handling against the bound test engine.
"""
import pytest

from core.db import bind_engine, get_engine, get_session, session_scope, setup_database
from models import AffiliateNode


@pytest.fixture
def bound(engine):
    bind_engine(engine)
    yield engine
    bind_engine(None)


class TestSessionScope:

    def test_bound_engine_is_used(self, bound):
        assert get_engine() is bound

    def test_commits_on_success(self, bound):
        with session_scope() as session:
            session.add(AffiliateNode(nodeID="n1"))

        check = get_session()
        try:
            assert check.get(AffiliateNode, "n1") is not None
        finally:
            check.close()

    def test_rolls_back_on_error(self, bound):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                session.add(AffiliateNode(nodeID="n1"))
                session.flush()
                raise RuntimeError("placement failed")

        check = get_session()
        try:
            assert check.get(AffiliateNode, "n1") is None
        finally:
            check.close()

    def test_setup_database_is_idempotent(self, bound):
        setup_database()
        setup_database()
