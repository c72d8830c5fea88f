from conftest import auth_header


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "cache": "disabled"}


def test_first_user_is_admin_then_registration_closes(client, admin_headers):
    me = client.get("/api/me", headers=admin_headers)
    assert me.status_code == 200
    assert me.json()["role"] == "admin"

    r = client.post("/api/auth/register", json={"username": "intruder", "password": "secret1"})
    assert r.status_code == 401

    r = client.post(
        "/api/auth/register",
        json={"username": "front", "password": "secret1", "role": "receptionist"},
        headers=admin_headers,
    )
    assert r.status_code == 201
    assert r.json()["role"] == "receptionist"

    front = auth_header(client, "front", "secret1")
    r = client.post(
        "/api/auth/register", json={"username": "other", "password": "secret1"}, headers=front
    )
    assert r.status_code == 403


def test_login_rejects_bad_password(client, admin_headers):
    r = client.post("/api/auth/login", data={"username": "admin", "password": "wrong"})
    assert r.status_code == 401


def test_protected_routes_need_token(client):
    assert client.get("/api/patients").status_code == 401
    assert client.get("/api/patients", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_patient_endpoints_and_error_mapping(client, admin_headers):
    r = client.post("/api/patients", json={"full_name": "Maria Silva", "cpf": "111"}, headers=admin_headers)
    assert r.status_code == 201
    pid = r.json()["patient_id"]

    assert client.get(f"/api/patients/{pid}", headers=admin_headers).json()["full_name"] == "Maria Silva"

    dup = client.post("/api/patients", json={"full_name": "Other", "cpf": "111"}, headers=admin_headers)
    assert dup.status_code == 400

    missing = client.get("/api/patients/nope", headers=admin_headers)
    assert missing.status_code == 404

    bad = client.post(f"/api/patients/{pid}/pain-logs", json={"level": 15}, headers=admin_headers)
    assert bad.status_code == 422

    r = client.post(f"/api/patients/{pid}/sessions", json={"assessment": "Stable"}, headers=admin_headers)
    sid = r.json()["session_id"]
    done = client.post(f"/api/patients/sessions/{sid}/complete", headers=admin_headers)
    assert done.status_code == 200
    assert done.json()["points_awarded"] == 50


def test_booking_conflict_is_409(client, admin_headers):
    staff = client.get("/api/staff", params={"role": "physiotherapist"}, headers=admin_headers).json()
    assert len(staff) == 2
    therapist_id = staff[0]["id"]
    pid = client.post("/api/patients", json={"full_name": "Maria"}, headers=admin_headers).json()["patient_id"]

    body = {"patient_id": pid, "therapist_id": therapist_id, "start": "2030-01-10T10:00:00"}
    first = client.post("/api/appointments", json=body, headers=admin_headers)
    assert first.status_code == 201

    clash = client.post("/api/appointments", json={**body, "start": "2030-01-10T10:30:00"}, headers=admin_headers)
    assert clash.status_code == 409

    agenda = client.get(
        "/api/agenda", params={"therapist_id": therapist_id, "day": "2030-01-10"}, headers=admin_headers
    )
    assert [row["start"] for row in agenda.json()] == ["10:00"]


def test_financial_routes_by_role(client, admin_headers):
    client.post(
        "/api/auth/register",
        json={"username": "physio", "password": "secret1", "role": "physiotherapist"},
        headers=admin_headers,
    )
    physio = auth_header(client, "physio", "secret1")

    assert client.get("/api/receivables", headers=physio).status_code == 403
    assert client.get("/api/reports/income-statement", headers=physio).status_code == 403
    assert client.get("/api/reports/dashboard", headers=physio).status_code == 200

    r = client.post(
        "/api/receivables",
        json={"description": "Package", "amount": 10000, "due_date": "2030-01-10"},
        headers=admin_headers,
    )
    assert r.status_code == 201
    rid = r.json()["id"]

    paid = client.post(f"/api/receivables/{rid}/pay", json={"amount": 10000, "payment_method": "pix"}, headers=admin_headers)
    assert paid.json()["status"] == "paid"
    again = client.post(f"/api/receivables/{rid}/pay", json={"amount": 100}, headers=admin_headers)
    assert again.status_code == 400


def test_crm_and_gamification_endpoints(client, admin_headers):
    lead = client.post("/api/leads", json={"name": "Pedro", "phone": "123", "source": "referral"}, headers=admin_headers)
    lid = lead.json()["lead_id"]

    converted = client.post(f"/api/leads/{lid}/convert", json={"send_welcome": True}, headers=admin_headers).json()
    assert converted["patient_created"] is True

    funnel = client.get("/api/crm/funnel", headers=admin_headers).json()
    assert funnel["conversion_rate"] == 100.0

    pid = converted["patient_id"]
    r = client.post("/api/gamification/actions", json={"patient_id": pid, "action": "pain_log"}, headers=admin_headers)
    assert r.json()["points_awarded"] == 5

    board = client.get("/api/gamification/leaderboard", headers=admin_headers).json()
    assert board[0]["patient_id"] == pid

    pending = client.get("/api/notifications/pending", headers=admin_headers).json()
    assert [n["type"] for n in pending] == ["welcome"]


def test_lead_patch_with_null_required_field_is_rejected(client, admin_headers):
    lid = client.post("/api/leads", json={"name": "Pedro", "phone": "123"}, headers=admin_headers).json()["lead_id"]

    r = client.patch(f"/api/leads/{lid}", json={"phone": None}, headers=admin_headers)
    assert r.status_code == 400
    assert client.get(f"/api/leads/{lid}", headers=admin_headers).json()["phone"] == "123"

    r = client.patch(f"/api/leads/{lid}", json={"source": "Referral"}, headers=admin_headers)
    assert r.json()["source"] == "referral"
