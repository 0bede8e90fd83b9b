import pytest

from finance_module.capabilities import FINANCE_FEATURE
from finance_module.models import CenterFeaturePermission

from .conftest import ACADEMIC_YEAR, CENTER_ID, OTHER_CENTER_ID


BASE = "/api/v1/finance"


@pytest.fixture
def student_id(db, add_student, give_fees):
    student = add_student("Asha Rao")
    give_fees(student, {"TUITION": "1000"})
    student_id = student.id
    # Release the shared in-memory connection before the app opens its own session.
    db.close()
    return student_id


def _generate(client, headers):
    body = {"centerId": CENTER_ID, "month": 3, "year": 2024, "academicYear": ACADEMIC_YEAR}
    return client.post(f"{BASE}/invoices/generate", json=body, headers=headers)


def test_generate_returns_camel_case_payload(client, auth_header, student_id):
    response = _generate(client, auth_header())

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["invoicesGenerated"] == 1
    assert data["alreadyExists"] is False
    assert data["invoices"][0]["studentId"] == student_id
    assert data["invoices"][0]["totalAmount"] == 1000.0

    again = _generate(client, auth_header()).json()
    assert again["invoicesGenerated"] == 0
    assert again["alreadyExists"] is True
    assert again["message"] == "Invoices already exist for 3/2024. Skipping generation."


def test_payment_flow_over_http(client, auth_header, student_id):
    headers = auth_header()
    invoice_id = _generate(client, headers).json()["invoices"][0]["invoiceId"]

    response = client.post(
        f"{BASE}/payments",
        json={
            "center_id": CENTER_ID,
            "student_id": student_id,
            "invoice_id": invoice_id,
            "amount_paid": "400",
            "payment_method": "cash",
            "payment_date": "2024-03-10",
        },
        headers=headers,
    )
    assert response.status_code == 201
    assert response.json()["amount_paid"] == 400.0
    assert response.json()["received_by"] == "staff-1"

    detail = client.get(f"{BASE}/invoices/{invoice_id}", headers=headers).json()
    assert detail["status"] == "partial"
    assert detail["outstanding_amount"] == 600.0

    recon = client.get(f"{BASE}/reports/reconciliation", params={"center_id": CENTER_ID}, headers=headers).json()
    assert recon["matched"] is True
    assert recon["subledger"] == 600.0


def test_engine_validation_message_is_passed_through(client, auth_header, student_id):
    response = client.post(
        f"{BASE}/payments",
        json={"center_id": CENTER_ID, "student_id": student_id, "amount_paid": "0", "payment_method": "cash"},
        headers=auth_header(),
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "amount_paid must be greater than zero"


def test_unknown_invoice_is_404(client, auth_header, student_id):
    response = client.get(f"{BASE}/invoices/does-not-exist", headers=auth_header())
    assert response.status_code == 404
    assert response.json()["detail"] == "Invoice not found"


def test_missing_or_bad_token_is_401(client, student_id):
    missing = _generate(client, {})
    assert missing.status_code == 401
    assert missing.json()["detail"] == "Missing Authorization header"
    assert _generate(client, {"Authorization": "Bearer"}).json()["detail"] == "Invalid auth scheme"
    assert _generate(client, {"Authorization": "Bearer not-a-jwt"}).status_code == 401
    assert _generate(client, {"Authorization": "Basic abc"}).status_code == 401


@pytest.mark.parametrize(
    "role,center_id",
    [("teacher", CENTER_ID), ("parent", CENTER_ID), ("center", OTHER_CENTER_ID)],
)
def test_generation_denied_without_capability(client, auth_header, student_id, role, center_id):
    response = _generate(client, auth_header(role=role, center_id=center_id))
    assert response.status_code == 403


def test_parent_sees_only_their_own_child(client, auth_header, db, add_student, give_fees):
    own, other = add_student("Child A"), add_student("Child B")
    give_fees(own, {"TUITION": "1000"})
    give_fees(other, {"TUITION": "700"})
    own_id, other_id = own.id, other.id
    db.close()
    _generate(client, auth_header())
    parent = auth_header(role="parent", subject="parent-1", student_ids=[own_id])

    mine = client.get(f"{BASE}/invoices", params={"center_id": CENTER_ID, "student_id": own_id}, headers=parent)
    assert mine.status_code == 200
    assert [view["invoice"]["student_id"] for view in mine.json()] == [own_id]
    own_invoice = mine.json()[0]["invoice"]["id"]
    assert client.get(f"{BASE}/invoices/{own_invoice}", headers=parent).status_code == 200
    payments = client.get(f"{BASE}/payments", params={"center_id": CENTER_ID, "student_id": own_id}, headers=parent)
    assert payments.status_code == 200

    staff_view = client.get(
        f"{BASE}/invoices", params={"center_id": CENTER_ID, "student_id": other_id}, headers=auth_header()
    ).json()
    other_invoice = staff_view[0]["invoice"]["id"]
    assert client.get(f"{BASE}/invoices/{other_invoice}", headers=parent).status_code == 403
    assert client.get(
        f"{BASE}/invoices", params={"center_id": CENTER_ID, "student_id": other_id}, headers=parent
    ).status_code == 403
    assert client.get(f"{BASE}/invoices", params={"center_id": CENTER_ID}, headers=parent).status_code == 403
    assert client.get(f"{BASE}/payments", params={"center_id": CENTER_ID}, headers=parent).status_code == 403
    assert client.get(f"{BASE}/ledger/invoice/{own_invoice}", headers=parent).status_code == 403


@pytest.mark.parametrize(
    "path", ["/summaries", "/reports/aging", "/reports/reconciliation", "/reports/trial-balance", "/expenses"]
)
def test_center_wide_reports_are_refused_to_parents(client, auth_header, student_id, path):
    _generate(client, auth_header())
    parent = auth_header(role="parent", subject="parent-1", student_ids=[student_id])

    assert client.get(f"{BASE}{path}", params={"center_id": CENTER_ID}, headers=parent).status_code == 403
    assert client.get(f"{BASE}{path}", params={"center_id": CENTER_ID}, headers=auth_header()).status_code == 200


def test_disabled_finance_feature_blocks_center_staff(client, auth_header, db, student_id):
    db.add(CenterFeaturePermission(center_id=CENTER_ID, feature_name=FINANCE_FEATURE, is_enabled=False))
    db.commit()
    db.close()

    assert _generate(client, auth_header()).status_code == 403
    assert _generate(client, auth_header(role="admin", center_id=None)).status_code == 200


def test_expense_approval_over_http(client, auth_header, student_id):
    headers = auth_header()
    created = client.post(
        f"{BASE}/expenses",
        json={"center_id": CENTER_ID, "expense_category": "rent", "description": "March rent", "amount": "900"},
        headers=headers,
    )
    assert created.status_code == 201
    expense_id = created.json()["id"]

    approved = client.post(f"{BASE}/expenses/{expense_id}/approve", headers=headers)
    assert approved.status_code == 200
    assert approved.json()["approved_by"] == "staff-1"
    assert client.post(f"{BASE}/expenses/{expense_id}/approve", headers=headers).status_code == 409

    rows = client.get(f"{BASE}/reports/trial-balance", params={"center_id": CENTER_ID}, headers=headers).json()
    assert {r["account_code"] for r in rows} == {"1101", "5101"}


def test_ledger_entries_and_listings(client, auth_header, student_id):
    headers = auth_header()
    invoice_id = _generate(client, headers).json()["invoices"][0]["invoiceId"]

    entries = client.get(f"{BASE}/ledger/invoice/{invoice_id}", headers=headers).json()
    assert sorted((e["account_code"], e["debit_amount"], e["credit_amount"]) for e in entries) == [
        ("1301", 1000.0, 0.0),
        ("4101", 0.0, 1000.0),
    ]
    other = client.get(f"{BASE}/ledger/invoice/{invoice_id}", headers=auth_header(center_id=OTHER_CENTER_ID))
    assert other.status_code == 403

    headings = client.get(f"{BASE}/fee-headings", params={"center_id": CENTER_ID}, headers=headers).json()
    assert [h["heading_code"] for h in headings] == ["TUITION"]
    assert client.get(f"{BASE}/expenses", params={"center_id": CENTER_ID}, headers=headers).json() == []


def test_ledger_for_unknown_reference(client, auth_header, student_id):
    missing = client.get(f"{BASE}/ledger/invoice/does-not-exist", headers=auth_header())
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Invoice not found"

    for role in ("teacher", "parent"):
        response = client.get(f"{BASE}/ledger/payment/does-not-exist", headers=auth_header(role=role))
        assert response.status_code == 403
