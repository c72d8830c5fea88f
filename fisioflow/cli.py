from __future__ import annotations

import argparse
from datetime import date, datetime

from fisioflow.auth_models import UserRole
from fisioflow.auth_service import create_user
from fisioflow.config import configure_logging
from fisioflow.crm import scoring_board
from fisioflow.db import init_db
from fisioflow.errors import NotFoundError, ValidationError
from fisioflow.models import AppointmentType
from fisioflow.notifications import dispatch_pending, mark_notification_sent, pending_notifications
from fisioflow.patients import create_patient, list_patients
from fisioflow.scheduling import book_appointment, cancel_appointment, list_staff, list_waitlist, queue_reminders
from fisioflow.seed import seed_admin, seed_base


def cmd_init(args: argparse.Namespace) -> None:
    init_db()
    seed_base()
    seed_admin()
    print("Database initialised and reference data seeded.")


def cmd_list(args: argparse.Namespace) -> None:
    if args.entity == "staff":
        for m in list_staff():
            print(f"{m['id']} | {m['name']} | {m['role']} | {m['specialty'] or '-'}")
    elif args.entity == "patients":
        for p in list_patients():
            print(f"{p['id']} | {p['full_name']} | {p['phone'] or '-'} | {p['total_points']} pts")
    elif args.entity == "waitlist":
        for w in list_waitlist():
            print(f"{w['id']} | {w['patient_name']} | {w['preferred_date'] or '-'} {w['preferred_time'] or ''}")


def cmd_add_patient(args: argparse.Namespace) -> None:
    birth_date = date.fromisoformat(args.birth_date) if args.birth_date else None
    pid = create_patient(args.name, args.email, args.phone, args.cpf, birth_date)
    print(f"Patient created: {pid}")


def cmd_book(args: argparse.Namespace) -> None:
    start = datetime.fromisoformat(args.start)  # e.g. 2026-01-14T10:30
    end = datetime.fromisoformat(args.end) if args.end else None
    outcome = book_appointment(
        patient_id=args.patient_id,
        therapist_id=args.therapist_id,
        start=start,
        end=end,
        type=AppointmentType(args.type),
        notes=args.notes,
        waitlist_if_full=not args.no_waitlist,
    )
    print(outcome.message)
    if outcome.appointment_id:
        print(f"Appointment ID: {outcome.appointment_id}")


def cmd_cancel(args: argparse.Namespace) -> None:
    result = cancel_appointment(args.appointment_id, reason=args.reason)
    print(f"Cancelled {result['id']}.")
    for m in result["waitlist_matches"]:
        print(f"  candidate {m['entry_id']} | {m['patient_name']} | score {m['score']} | {', '.join(m['reasons'])}")


def cmd_reminders(args: argparse.Namespace) -> None:
    stats = queue_reminders(hours_ahead=args.hours)
    print(f"{stats['queued']} reminders queued, {stats['skipped']} skipped (no phone).")


def cmd_notifications(args: argparse.Namespace) -> None:
    """
    Outbound queue:
    - --send delivers through the WhatsApp gateway
    - otherwise prints pending messages, optionally marking them sent
    """
    if args.send:
        stats = dispatch_pending(limit=args.limit)
        print(f"sent {stats['sent']}, failed {stats['failed']}")
        return

    pending = pending_notifications(limit=args.limit)
    if not pending:
        print("No pending notifications.")
        return

    for n in pending:
        print(f"[{n['id']}] {n['type']} | {n['created_at']} | {n['recipient'] or '-'} | {n['message']}")
        if args.mark_sent:
            mark_notification_sent(n["id"])

    if args.mark_sent:
        print("Notifications marked as sent.")


def cmd_score_leads(args: argparse.Namespace) -> None:
    board = scoring_board(tier=args.tier)
    for lead in board["leads"]:
        print(f"{lead['score']:>3} {lead['tier']:<4} | {lead['name']} | {lead['phone']} | {lead['status']}")
    counts = board["counts"]
    print(f"hot {counts['hot']}, warm {counts['warm']}, cold {counts['cold']}")


def cmd_create_user(args: argparse.Namespace) -> None:
    uid = create_user(args.username, args.password, role=UserRole(args.role), full_name=args.full_name)
    print(f"User created: {uid}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fisioflow", description="FisioFlow clinic management CLI")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create tables and seed reference data")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="List entities")
    p_list.add_argument("entity", choices=["staff", "patients", "waitlist"])
    p_list.set_defaults(func=cmd_list)

    p_addp = sub.add_parser("add-patient", help="Create a patient")
    p_addp.add_argument("--name", required=True)
    p_addp.add_argument("--email", default=None)
    p_addp.add_argument("--phone", default=None)
    p_addp.add_argument("--cpf", default=None)
    p_addp.add_argument("--birth-date", default=None, help="YYYY-MM-DD")
    p_addp.set_defaults(func=cmd_add_patient)

    p_book = sub.add_parser("book", help="Book an appointment")
    p_book.add_argument("--patient-id", required=True)
    p_book.add_argument("--therapist-id", default=None)
    p_book.add_argument("--start", required=True, help="ISO datetime e.g. 2026-01-14T10:30")
    p_book.add_argument("--end", default=None, help="ISO datetime; defaults to a standard session")
    p_book.add_argument("--type", default=AppointmentType.CONSULTATION.value, choices=[t.value for t in AppointmentType])
    p_book.add_argument("--notes", default=None)
    p_book.add_argument("--no-waitlist", action="store_true", help="If the slot is taken, do NOT join the waitlist")
    p_book.set_defaults(func=cmd_book)

    p_cancel = sub.add_parser("cancel", help="Cancel an appointment")
    p_cancel.add_argument("--appointment-id", required=True)
    p_cancel.add_argument("--reason", default=None)
    p_cancel.set_defaults(func=cmd_cancel)

    p_rem = sub.add_parser("reminders", help="Queue reminders for upcoming appointments")
    p_rem.add_argument("--hours", type=int, default=24)
    p_rem.set_defaults(func=cmd_reminders)

    p_not = sub.add_parser("notifications", help="Show or deliver pending notifications")
    p_not.add_argument("--limit", type=int, default=50)
    p_not.add_argument("--mark-sent", action="store_true", help="Mark as sent after printing")
    p_not.add_argument("--send", action="store_true", help="Deliver through the WhatsApp gateway")
    p_not.set_defaults(func=cmd_notifications)

    p_score = sub.add_parser("score-leads", help="Rank CRM leads by score")
    p_score.add_argument("--tier", choices=["hot", "warm", "cold"], default=None)
    p_score.set_defaults(func=cmd_score_leads)

    p_user = sub.add_parser("create-user", help="Create an application user")
    p_user.add_argument("--username", required=True)
    p_user.add_argument("--password", required=True)
    p_user.add_argument("--role", default=UserRole.RECEPTIONIST.value, choices=[r.value for r in UserRole])
    p_user.add_argument("--full-name", default=None)
    p_user.set_defaults(func=cmd_create_user)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    init_db()  # make sure tables exist
    try:
        args.func(args)
    except (NotFoundError, ValidationError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
