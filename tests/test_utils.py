import pytest

from backspin.errors import RateInputError
from backspin.utils import clamp, format_rate, parse_rate


@pytest.mark.parametrize(
    ("text", "expected"),
    [("1", 1.0), (" 2.5 ", 2.5), ("0.25", 0.25), ("1e1", 10.0), ("-3", -3.0)],
)
def test_parse_rate_accepts_numbers(text, expected):
    assert parse_rate(text) == expected


@pytest.mark.parametrize("text", [None, "", "   ", "abc", "1,5", "nan", "inf", "-inf"])
def test_parse_rate_rejects_garbage(text):
    with pytest.raises(RateInputError):
        parse_rate(text)


def test_rate_input_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_rate("fast")


@pytest.mark.parametrize(
    ("rate", "expected"),
    [(1.0, "1"), (16, "16"), (0.25, "0.25"), (2.5, "2.5"), (1.23456, "1.23"), (0.999, "1")],
)
def test_format_rate(rate, expected):
    assert format_rate(rate) == expected


def test_clamp():
    assert clamp(5, 0, 3) == 3
    assert clamp(-1, 0, 3) == 0
    assert clamp(2, 0, 3) == 2
