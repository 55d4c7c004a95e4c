import threading
from datetime import datetime
from functools import wraps

from loguru import logger
from pydantic import TypeAdapter
from tinydb import Query, TinyDB
from tinydb.operations import delete

from splitbill.errors import NotFoundError, SplitBillError, StoreFailureError
from splitbill.models.schemas import (
    ChatState,
    Member,
    Participant,
    PendingAction,
    Session,
    Transaction,
)

_pending_adapter = TypeAdapter(PendingAction)


def _store_call(func):
    """Run under the repository lock and turn TinyDB/file errors into StoreFailureError."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            with self._lock:
                return func(self, *args, **kwargs)
        except SplitBillError:
            raise
        except (OSError, ValueError) as e:
            logger.error("Ledger store call {} failed: {}", func.__name__, e)
            raise StoreFailureError(f"{func.__name__} failed") from e

    return wrapper


class LedgerRepository:
    def __init__(self, db_path: str = "split_ledger.json"):
        self.db = TinyDB(db_path)
        self.sessions = self.db.table("sessions")
        self.members = self.db.table("members")
        self.transactions = self.db.table("transactions")
        self.chat_states = self.db.table("chat_states")
        # TinyDB is not thread-safe; every call holds this, which also keeps
        # find-or-create from duplicating a member within one process
        self._lock = threading.RLock()

    def close(self) -> None:
        self.db.close()

    # ── Sessions ────────────────────────────────────────────────

    @_store_call
    def create_session(self, session: Session, creator: Participant | None = None) -> Session:
        data = session.model_dump(mode="json")
        data.pop("id", None)
        doc_id = self.sessions.insert(data)
        session.id = doc_id
        # TinyDB has no cross-table transaction: the member write is best-effort
        if creator is not None:
            self.find_or_create_member(doc_id, creator)
        return session

    @_store_call
    def get_session(self, id: int) -> Session | None:
        doc = self.sessions.get(doc_id=id)
        if doc is None:
            return None
        return Session(id=doc.doc_id, **doc)

    def require_session(self, id: int) -> Session:
        session = self.get_session(id)
        if session is None:
            raise NotFoundError("Session", id)
        return session

    @_store_call
    def list_sessions(self, chat_id: int) -> list[Session]:
        S = Query()
        docs = self.sessions.search(S.chat_id == chat_id)
        sessions = [Session(id=doc.doc_id, **doc) for doc in docs]
        sessions.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        return sessions

    @_store_call
    def update_session_status(self, id: int, status: str) -> Session:
        self.require_session(id)
        updates = {"status": status}
        if status == "ended":
            updates["ended_at"] = datetime.now().isoformat()
        self.sessions.update(updates, doc_ids=[id])
        return self.require_session(id)

    # ── Members ─────────────────────────────────────────────────

    @_store_call
    def list_members(self, session_id: int) -> list[Member]:
        self.require_session(session_id)
        M = Query()
        docs = self.members.search(M.session_id == session_id)
        return [Member(id=doc.doc_id, **doc) for doc in docs]

    @_store_call
    def find_member(self, session_id: int, participant: Participant) -> Member | None:
        M = Query()
        if participant.kind == "platform":
            cond = (M.session_id == session_id) & (M.external_id == participant.external_id)
        else:
            cond = (
                (M.session_id == session_id)
                & (M.kind == "free_text")
                & (M.username == participant.display_name)
            )
        docs = self.members.search(cond)
        if not docs:
            return None
        doc = min(docs, key=lambda d: d.doc_id)
        return Member(id=doc.doc_id, **doc)

    @_store_call
    def find_or_create_member(self, session_id: int, participant: Participant) -> Member:
        existing = self.find_member(session_id, participant)
        if existing is not None:
            return existing
        member = Member(
            session_id=session_id,
            kind=participant.kind,
            username=participant.display_name,
            external_id=getattr(participant, "external_id", None),
        )
        data = member.model_dump(mode="json")
        data.pop("id", None)
        member.id = self.members.insert(data)
        logger.debug("Created {} member {} in session #{}", member.kind, member.username, session_id)
        return member

    # ── Transactions ────────────────────────────────────────────

    @_store_call
    def add_transaction(self, transaction: Transaction) -> Transaction:
        self.require_session(transaction.session_id)
        data = transaction.model_dump(mode="json")
        data.pop("id", None)
        transaction.id = self.transactions.insert(data)
        return transaction

    @_store_call
    def add_transactions(self, transactions: list[Transaction]) -> list[Transaction]:
        """Insert a batch in a single table write, so either all rows land or none do."""
        for session_id in {tx.session_id for tx in transactions}:
            self.require_session(session_id)
        rows = []
        for tx in transactions:
            data = tx.model_dump(mode="json")
            data.pop("id", None)
            rows.append(data)
        ids = self.transactions.insert_multiple(rows)
        for tx, doc_id in zip(transactions, ids):
            tx.id = doc_id
        return transactions

    @_store_call
    def list_transactions(self, session_id: int) -> list[Transaction]:
        self.require_session(session_id)
        T = Query()
        docs = self.transactions.search(T.session_id == session_id)
        transactions = [Transaction(id=doc.doc_id, **doc) for doc in docs]
        transactions.sort(key=lambda t: (t.created_at, t.id))
        return transactions

    @_store_call
    def delete_transaction(self, session_id: int, transaction_id: int) -> None:
        self.require_session(session_id)
        doc = self.transactions.get(doc_id=transaction_id)
        if doc is None or doc["session_id"] != session_id:
            raise NotFoundError("Transaction", transaction_id)
        self.transactions.remove(doc_ids=[transaction_id])

    # ── Chat state ──────────────────────────────────────────────

    @_store_call
    def get_chat_state(self, chat_id: int) -> ChatState | None:
        C = Query()
        doc = self.chat_states.get(C.chat_id == chat_id)
        if doc is None:
            return None
        return ChatState(**doc)

    @_store_call
    def merge_chat_state(self, chat_id: int, **fields) -> None:
        """Write only the given fields, leaving the rest of the record alone."""
        C = Query()
        updates = {"chat_id": chat_id}
        for key, value in fields.items():
            if key == "pending_action" and value is not None:
                value = _pending_adapter.dump_python(value, mode="json")
            updates[key] = value
        self.chat_states.upsert(updates, C.chat_id == chat_id)

    @_store_call
    def remove_chat_state_field(self, chat_id: int, field: str) -> None:
        C = Query()
        doc = self.chat_states.get(C.chat_id == chat_id)
        if doc is None or field not in doc:
            return
        self.chat_states.update(delete(field), C.chat_id == chat_id)
