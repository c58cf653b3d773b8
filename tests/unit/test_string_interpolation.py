import pytest

from composetest.UTILS.string_interpolation import EnvironmentInterpolator, merge_contexts


@pytest.mark.parametrize("template, expected", [
    ("$NAME", "shop"),
    ("${NAME}-db", "shop-db"),
    ("${EMPTY:-fallback}", "fallback"),
    ("${EMPTY-fallback}", ""),
    ("${UNSET-fallback}", "fallback"),
    ("${NAME:+set}", "set"),
    ("${EMPTY:+set}", ""),
    ("${EMPTY+set}", "set"),
    ("$$NAME", "$NAME"),
    ("no variables", "no variables"),
])
def test_interpolate(template, expected):
    context = {"NAME": "shop", "EMPTY": ""}
    assert EnvironmentInterpolator.interpolate(template, context) == expected


def test_interpolate_unset_variable():
    with pytest.raises(KeyError):
        EnvironmentInterpolator.interpolate("${UNSET}", {})

    missing = []
    assert EnvironmentInterpolator.interpolate("a${UNSET}b$OTHER", {}, missing=missing) == "ab"
    assert missing == ["UNSET", "OTHER"]


def test_interpolate_required_variable():
    with pytest.raises(KeyError, match="must be set"):
        EnvironmentInterpolator.interpolate("${TOKEN:?must be set}", {"TOKEN": ""}, missing=[])
    assert EnvironmentInterpolator.interpolate("${TOKEN?}", {"TOKEN": ""}) == ""


def test_merge_contexts():
    assert merge_contexts({"A": "1", "B": "2"}, None, {"B": "3", "C": None}) == {"A": "1", "B": "3"}
