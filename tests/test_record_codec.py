import json

import pytest

from app.core.exceptions import DecodeError
from app.schemas.resume import ResumeRecord, StructuredFeedback
from app.services import record_codec
from conftest import STRUCTURED_FEEDBACK


def _record(feedback="", owner_id=None):
    return ResumeRecord(
        id="abc123",
        resume_path="r1",
        image_path="i1",
        company_name="Acme",
        job_title="Engineer",
        job_description="Build things",
        feedback=feedback,
        owner_id=owner_id,
    )


@pytest.mark.parametrize("feedback", [
    "",
    "Plain text feedback the model returned",
    StructuredFeedback.model_validate(STRUCTURED_FEEDBACK),
    StructuredFeedback.model_validate({"ATS": {"score": 40}}),
    StructuredFeedback.model_validate({"ATS": {"score": 82, "tips": ["Add metrics"]}, "summary": None}),
    StructuredFeedback.model_validate({
        "overallScore": None,
        "ATS": {"score": 82, "tips": [{"type": "improve", "tip": "Add metrics", "explanation": None}]},
        "skills": {"score": None, "tips": [], "missing": None},
    }),
])
def test_round_trip(feedback):
    record = _record(feedback)
    assert record_codec.decode(record_codec.encode(record)) == record


def test_encode_uses_wire_names():
    payload = json.loads(record_codec.encode(_record()))
    assert payload == {
        "id": "abc123",
        "resumePath": "r1",
        "imagePath": "i1",
        "companyName": "Acme",
        "jobTitle": "Engineer",
        "jobDescription": "Build things",
        "feedback": "",
        "ownerId": None,
    }


def test_encode_is_deterministic():
    feedback = StructuredFeedback.model_validate(STRUCTURED_FEEDBACK)
    assert record_codec.encode(_record(feedback)) == record_codec.encode(_record(feedback))


def test_unknown_feedback_sections_survive():
    feedback = StructuredFeedback.model_validate({"ATS": {"score": 90, "tips": []}, "impact": {"score": 3}})
    decoded = record_codec.decode(record_codec.encode(_record(feedback)))
    assert decoded.feedback.model_extra["impact"] == {"score": 3}


def test_decode_structured_feedback_from_stored_json():
    stored = json.dumps({
        "id": "abc123", "resumePath": "r1", "imagePath": "i1",
        "companyName": "Acme", "jobTitle": "Engineer", "jobDescription": "...",
        "feedback": {"ATS": {"score": 82, "tips": ["Add metrics"]}},
    })
    record = record_codec.decode(stored)
    assert isinstance(record.feedback, StructuredFeedback)
    assert record.feedback.ats.score == 82
    assert record.feedback.ats.tips == ["Add metrics"]


@pytest.mark.parametrize("value", [
    "not json",
    "[1, 2, 3]",
    json.dumps({"id": "abc123"}),
    json.dumps({
        "id": "abc123", "resumePath": "r1", "imagePath": "i1",
        "companyName": "Acme", "jobTitle": "Engineer", "jobDescription": "...",
        "feedback": {"ATS": "high"},
    }),
])
def test_decode_rejects_malformed_values(value):
    with pytest.raises(DecodeError):
        record_codec.decode(value)


def test_record_key_uses_namespace():
    assert record_codec.record_key("abc123") == "resume:abc123"


def test_null_extra_keys_survive():
    feedback = StructuredFeedback.model_validate({"ATS": {"score": 82}, "summary": None})
    decoded = record_codec.decode(record_codec.encode(_record(feedback)))
    assert decoded.feedback.model_extra == {"summary": None}
    assert json.loads(record_codec.encode(_record(feedback)))["feedback"]["summary"] is None


def test_owner_round_trips():
    record = _record(owner_id="7")
    assert json.loads(record_codec.encode(record))["ownerId"] == "7"
    assert record_codec.decode(record_codec.encode(record)).is_owned_by("7")
    assert not record.is_owned_by("8")
    assert not _record().is_owned_by("7")
