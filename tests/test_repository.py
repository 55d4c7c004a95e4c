"""
Tests for the TinyDB ledger store.
"""

from datetime import datetime, timedelta

import pytest

from splitbill.errors import NotFoundError, StoreFailureError
from splitbill.models.schemas import (
    FreeTextParticipant,
    OcrConfirmation,
    ReceiptResult,
    Session,
    Transaction,
)


def _add_tx(repo, session_id, amount, created_at=None, description=""):
    members = repo.list_members(session_id)
    tx = Transaction(
        session_id=session_id,
        payer_id=members[0].id,
        consumer_id=members[0].id,
        amount=amount,
        description=description,
    )
    if created_at is not None:
        tx.created_at = created_at
    return repo.add_transaction(tx)


class TestSessions:
    def test_create_and_get(self, repo, alice):
        created = repo.create_session(Session(chat_id=100, name="Trip"), creator=alice)

        fetched = repo.get_session(created.id)
        assert fetched.name == "Trip"
        assert fetched.chat_id == 100
        assert fetched.status == "active"
        assert fetched.ended_at is None

    def test_creator_becomes_platform_member(self, repo, alice):
        created = repo.create_session(Session(chat_id=100, name="Trip"), creator=alice)

        members = repo.list_members(created.id)
        assert len(members) == 1
        assert members[0].kind == "platform"
        assert members[0].external_id == 1
        assert members[0].username == "alice"

    def test_get_missing_session_returns_none(self, repo):
        assert repo.get_session(42) is None

    def test_require_missing_session_raises(self, repo):
        with pytest.raises(NotFoundError) as exc:
            repo.require_session(42)
        assert exc.value.kind == "Session"
        assert exc.value.id == 42

    def test_list_sessions_newest_first_and_scoped_to_chat(self, repo):
        first = repo.create_session(Session(chat_id=100, name="First"))
        second = repo.create_session(Session(chat_id=100, name="Second"))
        repo.create_session(Session(chat_id=200, name="Other chat"))

        sessions = repo.list_sessions(100)
        assert [s.id for s in sessions] == [second.id, first.id]

    def test_list_sessions_for_unknown_chat_is_empty(self, repo):
        assert repo.list_sessions(999) == []

    def test_end_sets_ended_at(self, repo):
        created = repo.create_session(Session(chat_id=100, name="Trip"))

        ended = repo.update_session_status(created.id, "ended")
        assert ended.status == "ended"
        assert ended.ended_at is not None

    def test_update_missing_session_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_session_status(42, "ended")


class TestTransactions:
    def test_empty_session_is_not_an_error(self, repo, session):
        assert repo.list_transactions(session.id) == []

    def test_missing_session_is_an_error(self, repo):
        with pytest.raises(NotFoundError):
            repo.list_transactions(42)

    def test_add_to_missing_session_raises(self, repo):
        tx = Transaction(session_id=42, payer_id=1, consumer_id=1, amount=10)
        with pytest.raises(NotFoundError):
            repo.add_transaction(tx)

    def test_listed_oldest_first(self, repo, session):
        now = datetime.now()
        _add_tx(repo, session.id, 30, created_at=now + timedelta(seconds=2), description="third")
        _add_tx(repo, session.id, 10, created_at=now, description="first")
        _add_tx(repo, session.id, 20, created_at=now + timedelta(seconds=1), description="second")

        descriptions = [tx.description for tx in repo.list_transactions(session.id)]
        assert descriptions == ["first", "second", "third"]

    def test_delete(self, repo, session):
        keep = _add_tx(repo, session.id, 10)
        drop = _add_tx(repo, session.id, 20)

        repo.delete_transaction(session.id, drop.id)
        assert [tx.id for tx in repo.list_transactions(session.id)] == [keep.id]

    def test_delete_missing_transaction_raises(self, repo, session):
        with pytest.raises(NotFoundError) as exc:
            repo.delete_transaction(session.id, 42)
        assert exc.value.kind == "Transaction"

    def test_delete_from_wrong_session_raises(self, repo, session, alice):
        other = repo.create_session(Session(chat_id=100, name="Other"), creator=alice)
        tx = _add_tx(repo, session.id, 10)

        with pytest.raises(NotFoundError):
            repo.delete_transaction(other.id, tx.id)
        assert len(repo.list_transactions(session.id)) == 1


class TestMembers:
    def test_list_members_of_missing_session_raises(self, repo):
        with pytest.raises(NotFoundError):
            repo.list_members(42)

    def test_find_or_create_reuses_existing(self, repo, session):
        rio = FreeTextParticipant(display_name="Rio")

        first = repo.find_or_create_member(session.id, rio)
        second = repo.find_or_create_member(session.id, rio)
        assert first.id == second.id
        assert len(repo.list_members(session.id)) == 2  # alice + Rio


class TestChatState:
    def test_no_state_for_new_chat(self, repo):
        assert repo.get_chat_state(100) is None

    def test_merge_keeps_other_fields(self, repo, session):
        pending = OcrConfirmation(session_id=session.id, receipt=ReceiptResult(success=True))

        repo.merge_chat_state(7, focused_session_id=session.id)
        repo.merge_chat_state(7, pending_action=pending)

        state = repo.get_chat_state(7)
        assert state.focused_session_id == session.id
        assert state.pending_action == pending

    def test_remove_field_keeps_the_rest(self, repo, session):
        pending = OcrConfirmation(session_id=session.id, receipt=ReceiptResult(success=True))
        repo.merge_chat_state(7, focused_session_id=session.id, pending_action=pending)

        repo.remove_chat_state_field(7, "pending_action")

        state = repo.get_chat_state(7)
        assert state.pending_action is None
        assert state.focused_session_id == session.id
        doc = next(d for d in repo.chat_states.all() if d["chat_id"] == 7)
        assert "pending_action" not in doc

    def test_remove_absent_field_is_a_no_op(self, repo):
        repo.remove_chat_state_field(7, "pending_action")
        assert repo.get_chat_state(7) is None


class TestStoreFailure:
    def test_io_errors_become_store_failures(self, repo, monkeypatch):
        def boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(repo.sessions, "insert", boom)

        with pytest.raises(StoreFailureError):
            repo.create_session(Session(chat_id=100, name="Trip"))
        assert repo.list_sessions(100) == []

    def test_add_batch_to_missing_session_raises(self, repo):
        tx = Transaction(session_id=42, payer_id=1, consumer_id=1, amount=10)
        with pytest.raises(NotFoundError):
            repo.add_transactions([tx])
        assert repo.transactions.all() == []
