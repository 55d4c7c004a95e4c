from loguru import logger

from splitbill.db.repository import LedgerRepository
from splitbill.errors import InvalidInputError
from splitbill.models.schemas import Participant, Transaction


class MemberResolver:
    """Maps chat participants onto the member records of one session.

    Telegram users are matched by their user id, everyone else by the exact
    name typed into the chat. The two namespaces never mix: a free-text
    "Rio" and the Telegram user "Rio" are different members.

    Participants are resolved one at a time. Two processes writing the same
    free-text name into the same session at once can still produce a
    duplicate member; that is tolerated rather than locked across processes.
    """

    def __init__(self, repo: LedgerRepository):
        self.repo = repo

    def resolve(self, session_id: int, participants: list[Participant]) -> dict[str, int]:
        """Return {display_name: member_id}, creating members that don't exist yet."""
        self.repo.require_session(session_id)
        member_ids: dict[str, int] = {}
        for participant in participants:
            member = self.repo.find_or_create_member(session_id, participant)
            member_ids[participant.display_name] = member.id
        return member_ids

    def add_transaction(
        self,
        session_id: int,
        payer: Participant,
        consumer: Participant,
        amount: float,
        description: str = "",
    ) -> Transaction:
        if amount < 0:
            raise InvalidInputError("Amount cannot be negative")
        self.repo.require_session(session_id)
        payer_member = self.repo.find_or_create_member(session_id, payer)
        consumer_member = self.repo.find_or_create_member(session_id, consumer)
        transaction = Transaction(
            session_id=session_id,
            payer_id=payer_member.id,
            consumer_id=consumer_member.id,
            amount=amount,
            description=description,
        )
        created = self.repo.add_transaction(transaction)
        logger.info(
            "Session #{}: {} paid {} for {} ({})",
            session_id, payer.display_name, amount, consumer.display_name, description,
        )
        return created

    def add_transactions(
        self,
        session_id: int,
        entries: list[tuple[Participant, Participant, float, str]],
    ) -> list[Transaction]:
        """Record several (payer, consumer, amount, description) entries at once.

        Members are resolved first; the transactions themselves go to the
        store in one write, so a failure records none of them and the same
        entries can be sent again without duplicating anything.
        """
        if any(amount < 0 for _, _, amount, _ in entries):
            raise InvalidInputError("Amount cannot be negative")
        self.repo.require_session(session_id)
        transactions = []
        for payer, consumer, amount, description in entries:
            payer_member = self.repo.find_or_create_member(session_id, payer)
            consumer_member = self.repo.find_or_create_member(session_id, consumer)
            transactions.append(
                Transaction(
                    session_id=session_id,
                    payer_id=payer_member.id,
                    consumer_id=consumer_member.id,
                    amount=amount,
                    description=description,
                )
            )
        created = self.repo.add_transactions(transactions)
        logger.info("Session #{}: recorded {} transactions", session_id, len(created))
        return created
