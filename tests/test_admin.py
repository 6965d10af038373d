import pytest

from admin import validate_admin_secret_key


def test_exact_pass_phrase_is_accepted(admin_key):
    assert validate_admin_secret_key(admin_key)


@pytest.mark.parametrize("candidate", [
    "",
    "tide_guard_2024",
    " TIDE_GUARD_2024",
    "TIDE_GUARD_2024 ",
    "TIDE_GUARD_202",
    "TIDE_GUARD_20245",
    "TÏDE_GUARD_2024",
])
def test_anything_else_is_rejected(candidate):
    assert not validate_admin_secret_key(candidate)


def test_non_string_is_rejected():
    assert not validate_admin_secret_key(None)


def test_reads_configured_pass_phrase(monkeypatch):
    monkeypatch.setattr("config.ADMIN_SECRET_KEY", "mangroves-forever")
    assert validate_admin_secret_key("mangroves-forever")
    assert not validate_admin_secret_key("TIDE_GUARD_2024")
