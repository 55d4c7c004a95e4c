"""Net balances and the settle-up plan for a session.

Everything here is a pure function over an already-fetched snapshot of
members and transactions: no I/O, safe to call from any handler.

The plan is built greedily, always pairing the member who owes the most
with the member who is owed the most. It does not always find the
smallest possible number of payments, but it is deterministic, runs in
O(n log n) and always balances the ledger.
"""

from decimal import ROUND_HALF_UP, Decimal

from splitbill.models.schemas import (
    Member,
    MemberBalance,
    MemberPayment,
    PlannedPayment,
    SettlementResult,
    SettlementSummary,
    Transaction,
)

# Transfers at or below this are rounding noise and are left out of the plan
MIN_TRANSFER = 0.5
# A remaining balance smaller than this counts as settled
SETTLED_BELOW = 1


def round_half_up(amount: float) -> int:
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_balances(
    members: list[Member], transactions: list[Transaction]
) -> tuple[dict[int, float], dict[int, float]]:
    """Return (balance, total_paid) keyed by member id.

    A positive balance means the member is owed money, negative means they owe.
    """
    balances = {m.id: 0.0 for m in members}
    paid = {m.id: 0.0 for m in members}

    for tx in transactions:
        for member_id in (tx.payer_id, tx.consumer_id):
            if member_id not in balances:
                raise ValueError(
                    f"Transaction #{tx.id} references member #{member_id} "
                    "outside the session"
                )
        balances[tx.payer_id] += tx.amount
        paid[tx.payer_id] += tx.amount
        balances[tx.consumer_id] -= tx.amount

    return balances, paid


def build_plan(members: list[Member], balances: dict[int, float]) -> list[PlannedPayment]:
    names = {m.id: m.username for m in members}
    # Lists of [member_id, remaining balance]; sorts are stable so ties keep member order
    debtors = sorted(
        ([mid, bal] for mid, bal in balances.items() if bal < 0), key=lambda p: p[1]
    )
    creditors = sorted(
        ([mid, bal] for mid, bal in balances.items() if bal > 0), key=lambda p: -p[1]
    )

    plan = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        amount = min(-debtor[1], creditor[1])
        if amount > MIN_TRANSFER:
            plan.append(
                PlannedPayment(
                    debtor=names[debtor[0]],
                    creditor=names[creditor[0]],
                    amount=round_half_up(amount),
                    debtor_id=debtor[0],
                    creditor_id=creditor[0],
                )
            )
        debtor[1] += amount
        creditor[1] -= amount
        if abs(debtor[1]) < SETTLED_BELOW:
            i += 1
        if abs(creditor[1]) < SETTLED_BELOW:
            j += 1
    return plan


def calculate_settlement(
    members: list[Member], transactions: list[Transaction]
) -> SettlementResult:
    if not members:
        return SettlementResult(plan=[], summary=None)

    balances, paid = compute_balances(members, transactions)

    summary = SettlementSummary(
        total_expenses=sum(tx.amount for tx in transactions),
        member_count=len(members),
        payments=[
            MemberPayment(member_id=m.id, username=m.username, total_paid=paid[m.id])
            for m in members
        ],
        balances=[
            MemberBalance(member_id=m.id, username=m.username, balance=balances[m.id])
            for m in members
        ],
    )
    return SettlementResult(plan=build_plan(members, balances), summary=summary)
