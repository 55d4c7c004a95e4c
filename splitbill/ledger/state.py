from loguru import logger

from splitbill.db.repository import LedgerRepository
from splitbill.errors import InvalidInputError
from splitbill.ledger.settlement import calculate_settlement
from splitbill.models.schemas import (
    OcrAllocation,
    OcrConfirmation,
    Participant,
    Session,
    SettlementResult,
)


class SessionController:
    """Session lifecycle plus the per-chat focus pointer and pending action.

    The focus pointer and the pending action are two fields of the same
    chat-state record. Each is written and removed on its own so that
    changing one never clobbers the other.
    """

    def __init__(self, repo: LedgerRepository):
        self.repo = repo

    # ── Lifecycle ───────────────────────────────────────────────

    def create_session(self, chat_id: int, creator: Participant, name: str) -> Session:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("Session name is required")
        session = self.repo.create_session(Session(chat_id=chat_id, name=name), creator=creator)
        self.set_focus(chat_id, session.id)
        logger.info("Chat {} created session #{} '{}'", chat_id, session.id, name)
        return session

    def end_session(self, session_id: int) -> Session:
        session = self.repo.require_session(session_id)
        if session.status == "ended":
            return session
        logger.info("Ending session #{}", session_id)
        return self.repo.update_session_status(session_id, "ended")

    def reopen_session(self, session_id: int) -> Session:
        session = self.repo.require_session(session_id)
        if session.status == "active":
            return session
        logger.info("Reopening session #{}", session_id)
        return self.repo.update_session_status(session_id, "active")

    def list_sessions(self, chat_id: int) -> list[Session]:
        return self.repo.list_sessions(chat_id)

    def settlement(self, session_id: int) -> SettlementResult:
        """Fetch the session snapshot and run the settlement engine over it."""
        members = self.repo.list_members(session_id)
        transactions = self.repo.list_transactions(session_id)
        return calculate_settlement(members, transactions)

    # ── Focus ───────────────────────────────────────────────────

    def set_focus(self, chat_id: int, session_id: int) -> None:
        self.repo.require_session(session_id)
        self.repo.merge_chat_state(chat_id, focused_session_id=session_id)

    def get_focus(self, chat_id: int) -> Session | None:
        state = self.repo.get_chat_state(chat_id)
        if state is None or state.focused_session_id is None:
            return None
        session = self.repo.get_session(state.focused_session_id)
        if session is None:
            logger.warning(
                "Chat {} focused on missing session #{}, clearing",
                chat_id, state.focused_session_id,
            )
            self.clear_focus(chat_id)
        return session

    def clear_focus(self, chat_id: int) -> None:
        self.repo.remove_chat_state_field(chat_id, "focused_session_id")

    # ── Pending multi-turn action ───────────────────────────────

    def set_pending(self, chat_id: int, action: OcrConfirmation | OcrAllocation) -> None:
        self.repo.merge_chat_state(chat_id, pending_action=action)

    def get_pending(self, chat_id: int) -> OcrConfirmation | OcrAllocation | None:
        state = self.repo.get_chat_state(chat_id)
        if state is None:
            return None
        return state.pending_action

    def clear_pending(self, chat_id: int) -> None:
        self.repo.remove_chat_state_field(chat_id, "pending_action")
