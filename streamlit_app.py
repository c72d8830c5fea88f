from __future__ import annotations

import base64
import json
import os
from datetime import date, datetime, timezone

import requests
import streamlit as st

st.set_page_config(page_title="FisioFlow", layout="wide")

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")



# JWT helpers (UI only, signature not verified)

def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def jwt_payload(token: str) -> dict:
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def jwt_is_expired(token: str) -> bool:
    exp = jwt_payload(token).get("exp")
    if exp is None:
        return False

    now = int(datetime.now(tz=timezone.utc).timestamp())
    return now >= (int(exp) - 5)


def jwt_username(token: str) -> str:
    p = jwt_payload(token)
    return str(p.get("username") or p.get("sub") or "user")


def jwt_role(token: str) -> str:
    return str(jwt_payload(token).get("role") or "")


def money(cents: int | None) -> str:
    return f"R$ {(cents or 0) / 100:,.2f}"



# HTTP client (with JWT)

def _check(r: requests.Response) -> None:
    if r.status_code == 401:
        raise PermissionError("401 Unauthorized (invalid/expired token or backend restarted).")
    if r.status_code in (400, 404, 409):
        raise ValueError(r.json().get("detail", r.text))
    r.raise_for_status()


def api_get(path: str, token: str | None = None, params: dict | None = None) -> dict | list:
    headers = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    r = requests.get(f"{API_BASE}{path}", headers=headers, params=params, timeout=10)
    _check(r)
    return r.json()


def api_post(path: str, payload: dict | None, token: str | None = None) -> dict:
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    r = requests.post(f"{API_BASE}{path}", headers=headers, json=payload, timeout=10)
    _check(r)
    return r.json()


def api_login(username: str, password: str) -> str:
    # OAuth2PasswordRequestForm => x-www-form-urlencoded
    r = requests.post(
        f"{API_BASE}/api/auth/login",
        data={"username": username, "password": password},
        timeout=10,
    )
    r.raise_for_status()
    return r.json()["access_token"]


def is_logged_in() -> bool:
    token = st.session_state.get("token")
    return bool(token) and isinstance(token, str)


def do_logout() -> None:
    st.session_state.pop("token", None)
    st.session_state.pop("auth_error", None)
    st.rerun()


def require_auth() -> str | None:
    token = st.session_state.get("token")
    if not token:
        st.warning("Restricted section. Log in from the sidebar.")
        return None

    if jwt_is_expired(token):
        st.error("Session expired. Log out from the sidebar and log in again.")
        return None

    return token


def show_error(e: Exception) -> None:
    if isinstance(e, PermissionError):
        st.session_state["auth_error"] = str(e)
        st.error("Invalid session. Log out and log in again.")
    else:
        st.error(str(e))



# Sidebar login

with st.sidebar:
    st.header("Access")

    token = st.session_state.get("token")

    if not is_logged_in():
        u = st.text_input("Username", key="login_user")
        p = st.text_input("Password", type="password", key="login_pass")

        if st.button("Login", key="login_btn"):
            try:
                st.session_state["token"] = api_login(u.strip().lower(), p)
                st.session_state.pop("auth_error", None)
                st.success("Logged in.")
                st.rerun()
            except requests.HTTPError:
                st.error("Invalid credentials.")
            except requests.RequestException as e:
                st.error(str(e))
    else:
        # user info from the token, no /api/me round trip on every rerun
        st.write(f"User: **{jwt_username(token)}** ({jwt_role(token) or '-'})")

        if st.session_state.get("auth_error"):
            st.error(st.session_state["auth_error"])

        if st.button("Logout", key="logout_btn"):
            do_logout()

    st.divider()
    st.caption(f"API: {API_BASE}")



# UI

st.title("FisioFlow - physiotherapy clinic")

tab1, tab2, tab3, tab4, tab5 = st.tabs(["Agenda", "Patients", "CRM", "Finance", "Notifications"])


@st.cache_data(ttl=10)
def load_staff(token: str) -> list[dict]:
    return api_get("/api/staff", token=token, params={"role": "physiotherapist"})


@st.cache_data(ttl=10)
def load_patients(token: str) -> list[dict]:
    return api_get("/api/patients", token=token)



# TAB 1 - Agenda

with tab1:
    token = require_auth()
    if token:
        try:
            therapists = load_staff(token)
            patients = load_patients(token)
        except (PermissionError, ValueError, requests.RequestException) as e:
            show_error(e)
            therapists, patients = [], []

        st.subheader("Book appointment")
        colA, colB, colC = st.columns(3)
        with colA:
            therapist = st.selectbox(
                "Physiotherapist",
                options=therapists,
                format_func=lambda m: f"{m['name']} ({m['specialty'] or '-'})",
                key="book_therapist",
            )
            patient = st.selectbox(
                "Patient",
                options=patients,
                format_func=lambda p: f"{p['full_name']} | {p.get('phone') or '-'}",
                key="book_patient",
            )
        with colB:
            start_date = st.date_input("Date", value=date.today(), key="book_date")
            start_time = st.time_input(
                "Time",
                value=datetime.now().time().replace(second=0, microsecond=0),
                key="book_time",
            )
            appt_type = st.selectbox("Type", ["consultation", "evaluation", "therapy", "follow_up"], key="book_type")
        with colC:
            notes = st.text_area("Notes (optional)", height=100, key="book_notes")
            waitlist = st.checkbox("If the slot is taken, join the waitlist", value=True, key="book_waitlist")

        if st.button("Confirm booking", key="book_submit", disabled=not (therapist and patient)):
            payload = {
                "patient_id": patient["id"],
                "therapist_id": therapist["id"],
                "start": datetime.combine(start_date, start_time).isoformat(),
                "type": appt_type,
                "notes": notes or None,
                "waitlist_if_full": waitlist,
            }
            try:
                res = api_post("/api/appointments", payload, token=token)
                if res.get("appointment_id"):
                    st.success(f"{res['message']} (ID: {res['appointment_id']})")
                else:
                    st.warning(res.get("message"))
            except (PermissionError, ValueError, requests.RequestException) as e:
                show_error(e)

        st.divider()
        st.subheader("Daily agenda")
        day = st.date_input("Day", value=date.today(), key="agenda_day")
        if therapist:
            try:
                items = api_get("/api/agenda", token=token, params={"therapist_id": therapist["id"], "day": day.isoformat()})
                if not items:
                    st.info("No appointments for this day.")
                for a in items:
                    st.write(
                        f"- **{a['start']} - {a['end']}** | {a['patient_name']} | "
                        f"{a['type']} | {a['status']} | {a['notes'] or '-'}"
                    )
            except (PermissionError, ValueError, requests.RequestException) as e:
                show_error(e)



# TAB 2 - Patients

with tab2:
    token = require_auth()
    if token:
        with st.expander("New patient"):
            full_name = st.text_input("Full name", key="pat_name")
            c1, c2, c3 = st.columns(3)
            email = c1.text_input("Email (optional)", key="pat_email")
            phone = c2.text_input("Phone (optional)", key="pat_phone")
            cpf = c3.text_input("CPF (optional)", key="pat_cpf")
            condition = st.text_area("Condition (optional)", key="pat_condition")

            if st.button("Create patient", key="pat_submit"):
                if not full_name.strip():
                    st.error("Full name is required.")
                else:
                    try:
                        res = api_post(
                            "/api/patients",
                            {
                                "full_name": full_name.strip(),
                                "email": email.strip() or None,
                                "phone": phone.strip() or None,
                                "cpf": cpf.strip() or None,
                                "condition": condition.strip() or None,
                            },
                            token=token,
                        )
                        load_patients.clear()
                        st.success(f"Patient created: {res.get('patient_id')}")
                    except (PermissionError, ValueError, requests.RequestException) as e:
                        show_error(e)

        st.divider()
        try:
            rows = api_get("/api/patients", token=token)
            if not rows:
                st.info("No patients yet.")
            for p in rows:
                st.write(
                    f"- {p['full_name']} | {p.get('phone') or '-'} | "
                    f"level {p['level']} | {p['total_points']} pts | streak {p['current_streak']}"
                )
        except (PermissionError, ValueError, requests.RequestException) as e:
            show_error(e)

        st.subheader("Leaderboard")
        period = st.radio("Period", ["all", "week", "month"], horizontal=True, key="lb_period")
        try:
            for row in api_get("/api/gamification/leaderboard", token=token, params={"period": period}):
                st.write(f"{row['rank']}. **{row['full_name']}** {row['points']} pts | {row['badge_count']} badges")
        except (PermissionError, ValueError, requests.RequestException) as e:
            show_error(e)



# TAB 3 - CRM

with tab3:
    token = require_auth()
    if token:
        with st.expander("New lead"):
            c1, c2 = st.columns(2)
            lead_name = c1.text_input("Name", key="lead_name")
            lead_phone = c2.text_input("Phone", key="lead_phone")
            lead_source = st.selectbox("Source", ["whatsapp", "instagram", "referral", "website", "other"], key="lead_src")
            lead_budget = st.number_input("Budget (R$)", min_value=0.0, step=50.0, key="lead_budget")
            if st.button("Create lead", key="lead_submit"):
                try:
                    api_post(
                        "/api/leads",
                        {
                            "name": lead_name.strip(),
                            "phone": lead_phone.strip(),
                            "source": lead_source,
                            "budget": int(round(lead_budget * 100)) or None,
                        },
                        token=token,
                    )
                    st.success("Lead created.")
                except (PermissionError, ValueError, requests.RequestException) as e:
                    show_error(e)

        try:
            board = api_get("/api/crm/scoring", token=token)
            c = board["counts"]
            st.write(f"Hot **{c['hot']}** | Warm **{c['warm']}** | Cold **{c['cold']}**")
            for lead in board["leads"]:
                st.write(f"- {lead['score']:>3} {lead['tier']} | {lead['name']} | {lead['phone']} | {lead['status']}")

            funnel = api_get("/api/crm/funnel", token=token, params={"period": 30})
            st.subheader(f"Funnel (last 30 days, conversion {funnel['conversion_rate']}%)")
            for stage in funnel["stages"]:
                st.write(f"- {stage['stage']}: {stage['count']} ({stage['percentage']}%) drop-off {stage['drop_off']}")
        except (PermissionError, ValueError, requests.RequestException) as e:
            show_error(e)



# TAB 4 - Finance

with tab4:
    token = require_auth()
    if token:
        try:
            kpi = api_get("/api/reports/dashboard", token=token)
            c1, c2, c3, c4 = st.columns(4)
            c1.metric("Active patients", kpi["active_patients"])
            c2.metric("Appointments today", kpi["appointments_today"])
            c3.metric("Month balance", money(kpi["month_balance"]))
            c4.metric("Overdue receivables", f"{kpi['overdue_receivables']} ({money(kpi['overdue_amount'])})")
        except (PermissionError, ValueError, requests.RequestException) as e:
            show_error(e)

        if jwt_role(token) in ("admin", "receptionist"):
            try:
                dre = api_get("/api/reports/income-statement", token=token, params={"period": "month"})
                st.subheader("Income statement (this month)")
                st.write(f"Gross revenue: {money(dre['gross_revenue'])}")
                st.write(f"Net revenue: {money(dre['net_revenue'])}")
                st.write(f"Net profit: {money(dre['net_profit'])} ({dre['margins']['net']}%)")

                st.subheader("Overdue receivables")
                for r in api_get("/api/receivables", token=token, params={"overdue": True}):
                    st.write(f"- {r['due_date']} | {r['patient_name'] or '-'} | {r['description']} | {money(r['balance'])}")
            except (PermissionError, ValueError, requests.RequestException) as e:
                show_error(e)
        else:
            st.info("Financial reports are available to admin and front desk users.")



# TAB 5 - Notifications

with tab5:
    st.subheader("Pending notifications")

    token = require_auth()
    if token:
        try:
            pending = api_get("/api/notifications/pending", token=token, params={"limit": 200})
            if not pending:
                st.info("No pending notifications.")
            for n in pending:
                st.write(f"[{n['id']}] **{n['type']}** | {n.get('patient') or '-'} | {n.get('recipient') or '-'} - {n['message']}")

            if st.button("Queue tomorrow's reminders", key="rem_btn"):
                res = api_post("/api/reminders/queue", None, token=token)
                st.success(f"{res['queued']} reminders queued, {res['skipped']} without phone.")
        except (PermissionError, ValueError, requests.RequestException) as e:
            show_error(e)
