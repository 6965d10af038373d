import pytest

from errors import (
    BackendUnavailable,
    ErrorKind,
    MissingSchemaError,
    PermissionDeniedError,
    ValidationFailure,
    classify,
    notice_for,
)


@pytest.mark.parametrize("message,kind", [
    ('relation "reports" does not exist', ErrorKind.missing_schema),
    ("Could not find the function public.award_points", ErrorKind.missing_schema),
    ("JWT expired", ErrorKind.authentication),
    ("new row violates row-level security policy", ErrorKind.permission),
    ("permission denied for table profiles", ErrorKind.permission),
    ("network request failed", ErrorKind.connectivity),
    ("connection refused", ErrorKind.connectivity),
    ("something odd", ErrorKind.unknown),
])
def test_classify_by_message(message, kind):
    assert classify(Exception(message)) is kind


def test_classify_by_type():
    assert classify(BackendUnavailable("x")) is ErrorKind.connectivity
    assert classify(MissingSchemaError("x")) is ErrorKind.missing_schema
    assert classify(PermissionDeniedError("x")) is ErrorKind.permission


def test_missing_schema_notice_asks_for_setup():
    notice = notice_for(Exception('relation "reports" does not exist'))
    assert notice.variant == "destructive"
    assert "setup" in notice.description


def test_permission_notice_names_action():
    notice = notice_for(PermissionDeniedError("denied"), "update reports")
    assert notice.title == "Permission denied"
    assert "update reports" in notice.description


def test_validation_notice_is_passed_through():
    failure = ValidationFailure("Photo required", "Please upload or take a photo of the incident.")
    assert notice_for(failure).title == "Photo required"
