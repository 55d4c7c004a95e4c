from io import BytesIO

from openpyxl import load_workbook

from splitbill.report.export import build_report, report_filename


def test_report_filename(session):
    session.name = "Beach Trip 2024"
    assert report_filename(session) == "Report_Beach_Trip_2024.xlsx"


def test_report_lists_transactions_and_plan(controller, resolver, repo, session, alice, budi):
    resolver.add_transaction(session.id, alice, budi, 100, "dinner")
    resolver.add_transaction(session.id, budi, alice, 40, "coffee")

    content = build_report(
        session,
        repo.list_members(session.id),
        repo.list_transactions(session.id),
        controller.settlement(session.id),
    )
    sheet = load_workbook(BytesIO(content))["Report"]

    assert sheet["A1"].value == "Session report: Dinner"
    assert sheet["B3"].value == 140
    assert [sheet[f"{c}5"].value for c in "ABCD"] == ["Payer", "Consumer", "Description", "Amount"]
    assert [sheet[f"{c}6"].value for c in "ABCD"] == ["alice", "Budi", "dinner", 100]
    assert [sheet[f"{c}7"].value for c in "ABCD"] == ["Budi", "alice", "coffee", 40]
    assert [sheet[f"{c}9"].value for c in "ABC"] == ["From", "To", "Amount"]
    assert [sheet[f"{c}10"].value for c in "ABC"] == ["Budi", "alice", 60]


def test_empty_session_report(controller, repo, session):
    content = build_report(
        session,
        repo.list_members(session.id),
        repo.list_transactions(session.id),
        controller.settlement(session.id),
    )
    sheet = load_workbook(BytesIO(content))["Report"]

    assert sheet["B3"].value == 0
    assert sheet["A7"].value == "From"
    assert sheet["A8"].value is None
