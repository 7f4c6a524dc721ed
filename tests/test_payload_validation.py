import pytest

from services.payload_models import ApiResponse, ContactPayload


def valid(**overrides):
    data = {
        "fullName": "  Ama Mensah ",
        "companyName": "Green Fields Ltd",
        "interest": "not_sure",
        "marketObstacle": "quality_volume",
        "email": "ama@example.com",
        "phone": " ",
        "businessType": "",
    }
    data.update(overrides)
    return data


def test_contact_payload_trims_and_blanks_become_none():
    payload = ContactPayload.from_dict(valid())
    assert payload.fullName == "Ama Mensah"
    assert payload.phone is None
    assert payload.businessType is None
    assert payload.identity_fields() == {
        "fullName": "Ama Mensah",
        "companyName": "Green Fields Ltd",
        "email": "ama@example.com",
        "phone": None,
    }


@pytest.mark.parametrize(
    "overrides, reason",
    [
        ({"fullName": ""}, "fullName"),
        ({"companyName": None}, "companyName"),
        ({"interest": "maybe"}, "interest"),
        ({"marketObstacle": ""}, "marketObstacle"),
    ],
)
def test_contact_payload_rejects_missing_required(overrides, reason):
    with pytest.raises(ValueError) as excinfo:
        ContactPayload.from_dict(valid(**overrides))
    assert reason in str(excinfo.value)


def test_contact_payload_rejects_non_object():
    with pytest.raises(ValueError):
        ContactPayload.from_dict(["not", "a", "dict"])


def test_business_type_is_free_form():
    payload = ContactPayload.from_dict(valid(businessType="aquaculture"))
    assert payload.businessType == "aquaculture"


def test_api_response_omits_empty_parts():
    assert ApiResponse({"a": 1}).to_dict() == {"output": {"a": 1}}
    assert ApiResponse(None, "oops", ["x"]).to_dict() == {"output": None, "message": "oops", "errors": ["x"]}
