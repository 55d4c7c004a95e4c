from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field


# ── Ledger records ──────────────────────────────────────────────


class Session(BaseModel):
    id: int | None = None
    chat_id: int
    name: str
    status: Literal["active", "ended"] = "active"
    created_at: datetime = Field(default_factory=datetime.now)
    ended_at: datetime | None = None


class Member(BaseModel):
    id: int | None = None
    session_id: int
    kind: Literal["platform", "free_text"]
    username: str
    external_id: int | None = None


class Transaction(BaseModel):
    id: int | None = None
    session_id: int
    payer_id: int
    consumer_id: int
    amount: float = Field(ge=0)
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.now)


class PlatformParticipant(BaseModel):
    """Someone with a Telegram account, matched by user id."""

    kind: Literal["platform"] = "platform"
    external_id: int
    display_name: str


class FreeTextParticipant(BaseModel):
    """Someone only known by the name typed into the chat."""

    kind: Literal["free_text"] = "free_text"
    display_name: str


Participant = Annotated[
    PlatformParticipant | FreeTextParticipant, Field(discriminator="kind")
]


# ── Oracle output ───────────────────────────────────────────────


class ExtractedTransaction(BaseModel):
    payer: str
    consumer: str
    amount: float = Field(ge=0)
    description: str = ""


class ExtractionResult(BaseModel):
    is_transaction: bool = False
    transactions: list[ExtractedTransaction] = []


class ReceiptItem(BaseModel):
    name: str
    quantity: float = 1
    price: float = Field(ge=0)


class ReceiptResult(BaseModel):
    success: bool = False
    store: str | None = None
    total_amount: float = 0
    items: list[ReceiptItem] = []


class Allocation(BaseModel):
    consumer: str
    item_name: str
    price: float = Field(ge=0)


class AllocationResult(BaseModel):
    allocations: list[Allocation] = []


# ── Chat state ──────────────────────────────────────────────────


class OcrConfirmation(BaseModel):
    """Receipt was read; waiting for the chat to say who paid it."""

    kind: Literal["ocr_confirmation"] = "ocr_confirmation"
    session_id: int
    receipt: ReceiptResult


class OcrAllocation(BaseModel):
    """Payer is known; waiting for who consumed which item."""

    kind: Literal["ocr_allocation"] = "ocr_allocation"
    session_id: int
    receipt: ReceiptResult
    payer: Participant


PendingAction = Annotated[OcrConfirmation | OcrAllocation, Field(discriminator="kind")]


class ChatState(BaseModel):
    chat_id: int
    focused_session_id: int | None = None
    pending_action: PendingAction | None = None


# ── Settlement ──────────────────────────────────────────────────


class PlannedPayment(BaseModel):
    debtor: str
    creditor: str
    amount: int
    debtor_id: int
    creditor_id: int


class MemberPayment(BaseModel):
    member_id: int
    username: str
    total_paid: float


class MemberBalance(BaseModel):
    member_id: int
    username: str
    balance: float


class SettlementSummary(BaseModel):
    total_expenses: float
    member_count: int
    payments: list[MemberPayment] = []
    balances: list[MemberBalance] = []


class SettlementResult(BaseModel):
    plan: list[PlannedPayment] = []
    summary: SettlementSummary | None = None


# ── API requests ────────────────────────────────────────────────


class ExtractRequest(BaseModel):
    message: str
    sender: str


class CreateSessionRequest(BaseModel):
    chat_id: int
    name: str
    creator_id: int
    creator_name: str


class AddTransactionRequest(BaseModel):
    payer: Participant
    consumer: Participant
    amount: float = Field(ge=0)
    description: str = ""


class FocusRequest(BaseModel):
    session_id: int
