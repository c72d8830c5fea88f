from fisioflow.cli import main
from fisioflow.patients import list_patients
from fisioflow.scheduling import list_staff


def test_init_seeds_reference_data(capsys):
    assert main(["init"]) == 0
    assert "seeded" in capsys.readouterr().out
    assert len(list_staff()) == 3

    # idempotent
    assert main(["init"]) == 0
    assert len(list_staff()) == 3


def test_add_patient_and_list(capsys):
    assert main(["add-patient", "--name", "Maria Silva", "--phone", "+55 11 99999-0000"]) == 0
    assert "Patient created" in capsys.readouterr().out
    assert [p["full_name"] for p in list_patients()] == ["Maria Silva"]

    assert main(["list", "patients"]) == 0
    assert "Maria Silva" in capsys.readouterr().out


def test_book_full_slot_joins_waitlist(patient_id, therapist_id, capsys):
    args = ["book", "--patient-id", patient_id, "--therapist-id", therapist_id, "--start", "2030-01-10T10:00"]
    assert main(args) == 0
    assert "Appointment ID" in capsys.readouterr().out

    assert main(args) == 0
    assert "waitlist" in capsys.readouterr().out

    assert main(["list", "waitlist"]) == 0
    assert "Maria Silva" in capsys.readouterr().out


def test_domain_errors_return_exit_code(capsys):
    assert main(["cancel", "--appointment-id", "nope"]) == 1
    assert "Error" in capsys.readouterr().out


def test_notifications_queue(capsys):
    assert main(["notifications"]) == 0
    assert "No pending notifications." in capsys.readouterr().out
