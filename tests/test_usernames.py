import pytest

from guestbook.usernames import RESERVED_USERNAMES, sanitize_username, validate_username


def test_valid_username_is_accepted(word_filter):
    result = validate_username("valid_user-1", word_filter)
    assert result.is_valid
    assert result.error is None
    assert result.sanitized == "valid_user-1"


@pytest.mark.parametrize(
    "raw, error",
    [
        ("", "Username is required"),
        ("   ", "Username is required"),
        ("bad name", "Username cannot contain spaces"),
        ("tab\tname", "Username cannot contain spaces"),
        ("ab", "Username must be at least 3 characters long"),
        ("a" * 21, "Username must be 20 characters or less"),
        ("hello!", "Username can only contain letters, numbers, underscores, and hyphens"),
        ("jöhn", "Username can only contain letters, numbers, underscores, and hyphens"),
        ("_leading", "Username cannot start or end with underscores or hyphens"),
        ("trailing-", "Username cannot start or end with underscores or hyphens"),
        ("fuck", "Username contains inappropriate language"),
        ("admin", "This username is reserved and cannot be used"),
        ("Support", "This username is reserved and cannot be used"),
    ],
)
def test_rejections(word_filter, raw, error):
    result = validate_username(raw, word_filter)
    assert not result.is_valid
    assert result.error == error


def test_untrimmed_input_returns_trimmed_suggestion(word_filter):
    result = validate_username("  alice  ", word_filter)
    assert not result.is_valid
    assert result.error == "Username cannot contain leading or trailing spaces"
    assert result.sanitized == "alice"


def test_first_failing_rule_wins(word_filter):
    # too short and starts with an underscore: length is checked first
    assert validate_username("_a", word_filter).error == "Username must be at least 3 characters long"
    # bad characters and reserved-looking: charset is checked first
    assert validate_username("admin!", word_filter).error.startswith("Username can only contain")


def test_boundary_lengths(word_filter):
    assert validate_username("abc", word_filter).is_valid
    assert validate_username("a" * 20, word_filter).is_valid


def test_deterministic(word_filter):
    first = validate_username("some_body", word_filter)
    second = validate_username("some_body", word_filter)
    assert first == second


def test_reserved_list_covers_core_names():
    assert {"admin", "api", "root", "support"} <= RESERVED_USERNAMES


def test_sanitize_username_drops_whitespace():
    assert sanitize_username("  jo hn\t") == "john"
