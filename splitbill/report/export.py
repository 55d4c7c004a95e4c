import re
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font

from splitbill.models.schemas import Member, Session, SettlementResult, Transaction


def report_filename(session: Session) -> str:
    name = re.sub(r"\s", "_", session.name)
    return f"Report_{name}.xlsx"


def build_report(
    session: Session,
    members: list[Member],
    transactions: list[Transaction],
    result: SettlementResult,
) -> bytes:
    """Render the session's transactions and settlement plan as an .xlsx file."""
    names = {m.id: m.username for m in members}
    bold = Font(bold=True)

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Report"

    sheet.merge_cells("A1:D1")
    sheet["A1"] = f"Session report: {session.name}"
    sheet["A1"].font = Font(bold=True, size=16)

    sheet["A3"] = "Total expenses"
    sheet["B3"] = result.summary.total_expenses if result.summary else 0

    for col, header in zip("ABCD", ("Payer", "Consumer", "Description", "Amount")):
        sheet[f"{col}5"] = header
        sheet[f"{col}5"].font = bold

    row = 6
    for tx in transactions:
        sheet[f"A{row}"] = names.get(tx.payer_id, "Unknown")
        sheet[f"B{row}"] = names.get(tx.consumer_id, "Unknown")
        sheet[f"C{row}"] = tx.description
        sheet[f"D{row}"] = tx.amount
        row += 1

    row += 1
    for col, header in zip("ABC", ("From", "To", "Amount")):
        sheet[f"{col}{row}"] = header
        sheet[f"{col}{row}"].font = bold
    row += 1
    for payment in result.plan:
        sheet[f"A{row}"] = payment.debtor
        sheet[f"B{row}"] = payment.creditor
        sheet[f"C{row}"] = payment.amount
        row += 1

    for col in "ABCD":
        sheet.column_dimensions[col].width = 20

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
