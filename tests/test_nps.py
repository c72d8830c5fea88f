import pytest

from fisioflow.errors import NotFoundError, ValidationError
from fisioflow.nps import classify, list_responses, nps_summary, record_response, summarize


def test_classify():
    assert [classify(s) for s in (10, 9, 8, 7, 6, 0)] == [
        "promoter",
        "promoter",
        "passive",
        "passive",
        "detractor",
        "detractor",
    ]


def test_summarize_balanced():
    res = summarize([10, 9, 8, 7, 6, 0])
    assert res["nps"] == 0
    assert (res["promoters"], res["passives"], res["detractors"]) == (2, 2, 2)
    assert res["promoter_percentage"] == 33
    assert res["average"] == 6.7
    assert res["distribution"]["10"] == 1
    assert res["distribution"]["5"] == 0


def test_summarize_rounds_half_up():
    # one promoter out of eight: 12.5
    res = summarize([10, 7, 7, 7, 7, 7, 7, 7])
    assert res["nps"] == 13
    assert res["promoter_percentage"] == 13


def test_summarize_empty():
    res = summarize([])
    assert res["nps"] is None
    assert res["average"] is None
    assert res["total"] == 0


def test_record_and_summary(patient_id):
    for score in (10, 10, 9, 6):
        record_response(patient_id, score, source="whatsapp")

    res = nps_summary()
    assert res["nps"] == 50
    assert res["total"] == 4

    assert nps_summary(days=30)["total"] == 4

    rows = list_responses(patient_id)
    assert len(rows) == 4
    assert {r["category"] for r in rows} == {"promoter", "detractor"}
    assert rows[0]["patient_name"] == "Maria Silva"


def test_record_validation(patient_id):
    with pytest.raises(ValidationError):
        record_response(patient_id, 11)
    with pytest.raises(ValidationError):
        record_response(patient_id, True)
    with pytest.raises(NotFoundError):
        record_response("nope", 9)
    with pytest.raises(ValidationError):
        nps_summary(days=0)


def test_nps_uses_the_score_difference_before_rounding():
    # (4 - 1) / 24 * 100 is exactly 12.5
    res = summarize([10] * 4 + [0] + [7] * 19)
    assert res["nps"] == 13
