from fastapi import APIRouter, HTTPException, Response
from loguru import logger

from splitbill.deps import controller, oracle, repo, resolver
from splitbill.models.schemas import (
    AddTransactionRequest,
    CreateSessionRequest,
    ExtractionResult,
    ExtractRequest,
    FocusRequest,
    Member,
    PlatformParticipant,
    Session,
    SettlementResult,
    Transaction,
)
from splitbill.report.export import build_report, report_filename

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.post("/extract", response_model=ExtractionResult)
def extract_transactions(request: ExtractRequest):
    logger.info("Extracting transactions from: {}", request.message)
    return oracle.extract_transactions(request.message, request.sender)


@router.post("/sessions", response_model=Session)
def create_session(request: CreateSessionRequest):
    creator = PlatformParticipant(
        external_id=request.creator_id, display_name=request.creator_name
    )
    return controller.create_session(request.chat_id, creator, request.name)


@router.get("/sessions", response_model=list[Session])
def list_sessions(chat_id: int):
    return controller.list_sessions(chat_id)


@router.get("/sessions/{session_id}", response_model=Session)
def get_session(session_id: int):
    session = repo.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.post("/sessions/{session_id}/end", response_model=Session)
def end_session(session_id: int):
    return controller.end_session(session_id)


@router.post("/sessions/{session_id}/reopen", response_model=Session)
def reopen_session(session_id: int):
    return controller.reopen_session(session_id)


@router.get("/sessions/{session_id}/members", response_model=list[Member])
def list_members(session_id: int):
    return repo.list_members(session_id)


@router.get("/sessions/{session_id}/transactions", response_model=list[Transaction])
def list_transactions(session_id: int):
    return repo.list_transactions(session_id)


@router.post("/sessions/{session_id}/transactions", response_model=Transaction)
def add_transaction(session_id: int, request: AddTransactionRequest):
    session = repo.require_session(session_id)
    if session.status != "active":
        raise HTTPException(status_code=400, detail="Session has ended")
    return resolver.add_transaction(
        session_id, request.payer, request.consumer, request.amount, request.description
    )


@router.delete("/sessions/{session_id}/transactions/{transaction_id}")
def delete_transaction(session_id: int, transaction_id: int):
    repo.delete_transaction(session_id, transaction_id)
    logger.info("Deleted transaction #{} from session #{}", transaction_id, session_id)
    return {"detail": "Transaction deleted"}


@router.get("/sessions/{session_id}/settlement", response_model=SettlementResult)
def get_settlement(session_id: int):
    return controller.settlement(session_id)


@router.get("/sessions/{session_id}/report")
def export_report(session_id: int):
    session = repo.require_session(session_id)
    content = build_report(
        session,
        repo.list_members(session_id),
        repo.list_transactions(session_id),
        controller.settlement(session_id),
    )
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{report_filename(session)}"'},
    )


@router.get("/chats/{chat_id}/focus", response_model=Session | None)
def get_focus(chat_id: int):
    return controller.get_focus(chat_id)


@router.put("/chats/{chat_id}/focus", response_model=Session)
def set_focus(chat_id: int, request: FocusRequest):
    controller.set_focus(chat_id, request.session_id)
    return repo.require_session(request.session_id)


@router.delete("/chats/{chat_id}/focus")
def clear_focus(chat_id: int):
    controller.clear_focus(chat_id)
    return {"detail": "Focus cleared"}
