import pydantic
import pytest

from tour_backend.config import AdmissionPolicy, Settings
from tour_backend.errors import InvalidInput, NotFound
from tour_backend.models import (
    CompleteTourRequest,
    InboundPublish,
    InboundServiceResponse,
    RobotCommandRequest,
    TourInstance,
    Twist,
    VerifyPinRequest,
    WaypointArrivedRequest,
    decode_inbound,
)


def test_pin_request_accepts_five_digits():
    request = VerifyPinRequest(pin=[0, 1, 2, 3, 4])
    assert request.pin_string == "01234"


@pytest.mark.parametrize(
    "pin",
    [[1, 2, 3, 4], [1, 2, 3, 4, 5, 6], [1, 2, 3, 4, 10], [1, 2, 3, 4, "5"], [1, 2, 3, 4, 5.0], "12345", None],
)
def test_pin_request_rejects_malformed(pin):
    with pytest.raises(pydantic.ValidationError):
        VerifyPinRequest(pin=pin)


def test_request_validation_errors():
    with pytest.raises(pydantic.ValidationError):
        CompleteTourRequest()
    with pytest.raises(pydantic.ValidationError):
        WaypointArrivedRequest(tour_id="abc")
    with pytest.raises(pydantic.ValidationError):
        RobotCommandRequest(action="jump")
    assert CompleteTourRequest(history_id=3).history_id == 3


def test_tour_instance_pin_must_be_numeric():
    with pytest.raises(pydantic.ValidationError):
        TourInstance(
            instance_id="x",
            user_id=1,
            route_id=1,
            tour_name="t",
            pin="12a45",
            started_at="2024-05-01T10:00:00+00:00",
        )


def test_twist_planar():
    twist = Twist.planar(0.2, -0.5)
    assert twist.model_dump() == {"linear": {"x": 0.2, "y": 0.0, "z": 0.0}, "angular": {"x": 0.0, "y": 0.0, "z": -0.5}}


def test_decode_inbound_frames():
    frame = decode_inbound('{"op": "publish", "topic": "/odom", "msg": {"a": 1}}')
    assert isinstance(frame, InboundPublish)
    assert frame.msg == {"a": 1}

    response = decode_inbound(b'{"op": "service_response", "service": "/rosapi/topics", "values": {"topics": []}}')
    assert isinstance(response, InboundServiceResponse)

    for raw in ("not json", "[]", '{"topic": "/odom"}', '{"op": "png"}', '{"op": "publish"}'):
        with pytest.raises(InvalidInput):
            decode_inbound(raw)


def test_error_envelope():
    error = NotFound("Tour not found", tour_id="abc")
    assert error.status_code == 404
    assert error.to_dict() == {"success": False, "error": "Tour not found", "tour_id": "abc"}


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("ADMISSION_POLICY", "STRICT")
    monkeypatch.setenv("RECONNECT_INTERVAL_SECONDS", "5")
    monkeypatch.setenv("CANCEL_ON_ABANDON", "yes")

    settings = Settings()

    assert settings.admission_policy is AdmissionPolicy.STRICT
    assert settings.reconnect_interval == 5
    assert settings.cancel_on_abandon is True
    assert settings.mongodb_database == "tour_db"


def test_settings_reject_invalid_values(monkeypatch):
    monkeypatch.setenv("ADMISSION_POLICY", "first-come")
    with pytest.raises(InvalidInput):
        Settings()

    monkeypatch.delenv("ADMISSION_POLICY")
    monkeypatch.setenv("RECONNECT_INTERVAL_SECONDS", "soon")
    with pytest.raises(InvalidInput):
        Settings()

    monkeypatch.delenv("RECONNECT_INTERVAL_SECONDS")
    with pytest.raises(InvalidInput):
        Settings(narration_cache_size=0)
    with pytest.raises(InvalidInput):
        Settings(not_a_setting=1)
