import pytest

from splitbill.errors import InvalidInputError, NotFoundError
from splitbill.models.schemas import (
    FreeTextParticipant,
    OcrAllocation,
    OcrConfirmation,
    ReceiptItem,
    ReceiptResult,
)

CHAT = 100


@pytest.fixture
def receipt():
    return ReceiptResult(
        success=True,
        store="Warung Laut",
        total_amount=260,
        items=[
            ReceiptItem(name="CUMI BAKAR", quantity=1, price=100),
            ReceiptItem(name="KEPITING", quantity=1, price=150),
            ReceiptItem(name="ES TEH", quantity=2, price=10),
        ],
    )


class TestLifecycle:
    def test_create_focuses_new_session(self, controller, session):
        assert session.status == "active"
        assert controller.get_focus(CHAT).id == session.id

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_blank_name_rejected(self, controller, repo, alice, name):
        with pytest.raises(InvalidInputError):
            controller.create_session(CHAT, alice, name)
        assert repo.list_sessions(CHAT) == []
        assert repo.get_chat_state(CHAT) is None

    def test_name_is_trimmed(self, controller, alice):
        session = controller.create_session(CHAT, alice, "  Beach trip ")
        assert session.name == "Beach trip"

    def test_end_then_reopen(self, controller, session):
        ended = controller.end_session(session.id)
        assert ended.status == "ended"
        assert ended.ended_at is not None

        reopened = controller.reopen_session(session.id)
        assert reopened.status == "active"

    def test_reopen_active_session_is_a_no_op(self, controller, resolver, repo, session, alice, budi):
        resolver.add_transaction(session.id, alice, budi, 50, "coffee")
        before = repo.list_transactions(session.id)

        reopened = controller.reopen_session(session.id)

        assert reopened.status == "active"
        assert repo.get_session(session.id) == session
        assert repo.list_transactions(session.id) == before

    def test_reopen_keeps_transactions(self, controller, resolver, repo, session, alice, budi):
        resolver.add_transaction(session.id, alice, budi, 50, "coffee")
        controller.end_session(session.id)
        controller.reopen_session(session.id)

        assert len(repo.list_transactions(session.id)) == 1

    def test_end_twice_keeps_first_end_time(self, controller, session):
        first = controller.end_session(session.id)
        second = controller.end_session(session.id)
        assert second.ended_at == first.ended_at

    def test_end_missing_session(self, controller):
        with pytest.raises(NotFoundError):
            controller.end_session(42)


class TestFocus:
    def test_no_focus_for_new_chat(self, controller):
        assert controller.get_focus(555) is None

    def test_set_focus_overwrites(self, controller, alice, session):
        other = controller.create_session(200, alice, "Elsewhere")

        controller.set_focus(CHAT, other.id)
        assert controller.get_focus(CHAT).id == other.id

    def test_set_focus_to_missing_session(self, controller):
        with pytest.raises(NotFoundError):
            controller.set_focus(CHAT, 42)

    def test_clear_focus(self, controller, session):
        controller.clear_focus(CHAT)
        assert controller.get_focus(CHAT) is None

    def test_dangling_focus_heals_itself(self, controller, repo, session):
        repo.sessions.remove(doc_ids=[session.id])

        assert controller.get_focus(CHAT) is None
        assert repo.get_chat_state(CHAT).focused_session_id is None

    def test_clear_focus_keeps_pending_action(self, controller, session, receipt):
        pending = OcrConfirmation(session_id=session.id, receipt=receipt)
        controller.set_pending(CHAT, pending)

        controller.clear_focus(CHAT)
        assert controller.get_pending(CHAT) == pending


class TestPendingAction:
    def test_none_by_default(self, controller, session):
        assert controller.get_pending(CHAT) is None
        assert controller.get_pending(555) is None

    def test_set_and_get(self, controller, session, receipt):
        pending = OcrConfirmation(session_id=session.id, receipt=receipt)
        controller.set_pending(CHAT, pending)

        restored = controller.get_pending(CHAT)
        assert isinstance(restored, OcrConfirmation)
        assert restored == pending

    def test_new_pending_overwrites_old(self, controller, session, receipt):
        controller.set_pending(CHAT, OcrConfirmation(session_id=session.id, receipt=receipt))
        allocation = OcrAllocation(
            session_id=session.id,
            receipt=receipt,
            payer=FreeTextParticipant(display_name="rio"),
        )
        controller.set_pending(CHAT, allocation)

        restored = controller.get_pending(CHAT)
        assert isinstance(restored, OcrAllocation)
        assert restored.payer.display_name == "rio"

    def test_clear_pending_keeps_focus(self, controller, session, receipt):
        controller.set_pending(CHAT, OcrConfirmation(session_id=session.id, receipt=receipt))

        controller.clear_pending(CHAT)

        assert controller.get_pending(CHAT) is None
        assert controller.get_focus(CHAT).id == session.id

    def test_set_pending_keeps_focus(self, controller, session, receipt):
        controller.set_pending(CHAT, OcrConfirmation(session_id=session.id, receipt=receipt))
        assert controller.get_focus(CHAT).id == session.id


class TestSettlement:
    def test_worked_example_through_the_store(self, controller, resolver, session, alice, budi):
        resolver.add_transaction(session.id, alice, budi, 100, "dinner")
        resolver.add_transaction(session.id, budi, alice, 40, "coffee")

        result = controller.settlement(session.id)
        assert [(p.debtor, p.creditor, p.amount) for p in result.plan] == [("Budi", "alice", 60)]
        assert result.summary.total_expenses == 140

    def test_new_session_has_creator_but_nothing_to_settle(self, controller, session):
        result = controller.settlement(session.id)

        assert result.plan == []
        assert result.summary.member_count == 1
        assert result.summary.total_expenses == 0

    def test_missing_session(self, controller):
        with pytest.raises(NotFoundError):
            controller.settlement(42)
