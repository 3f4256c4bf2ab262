import pytest

from core.errors import ValidationError
from core.validation import parse_curated, validate_row


def test_valid_row_strips_hex_marker():
    record = validate_row("100 Mph", "#c93f38", "x")
    assert record.name == "100 Mph"
    assert record.hex_color == "c93f38"
    assert record.is_curated is True


def test_missing_marker_means_not_curated():
    assert validate_row("24 Carrot", "#e56e24", "").is_curated is False
    assert parse_curated("  ") is False
    assert parse_curated(None) is False


def test_name_is_trimmed():
    assert validate_row("  18th Century Green ", "#a59344").name == "18th Century Green"


@pytest.mark.parametrize("name", ["", "   ", "a" * 100, "a" * 150])
def test_rejects_bad_names(name):
    with pytest.raises(ValidationError) as exc:
        validate_row(name, "#c93f38", "")
    assert exc.value.field == "name"


def test_accepts_longest_allowed_name():
    assert validate_row("a" * 99, "#c93f38").name == "a" * 99


@pytest.mark.parametrize("hex_color", ["c93f38", "#c93f3", "#c93f381", "#zz3f38", "", "#fff"])
def test_rejects_bad_hex(hex_color):
    with pytest.raises(ValidationError) as exc:
        validate_row("Red", hex_color, "")
    assert exc.value.field == "hex_color"
