import pytest

from monke.core.filters import filter_response


@pytest.mark.parametrize(
    "raw, spoken",
    [
        ("Hello! *waves excitedly* How are you?", "Hello! How are you?"),
        ("Look at the **glowing star**!", "Look at the glowing star!"),
        ("# Title\nBody", "Title Body"),
        ("I love blue! *wiggles happily* What about you?", "I love blue! What about you?"),
        ("This is __very__ _really_ fun", "This is very really fun"),
        ("Type `print` to see it", "Type print to see it"),
        ("Before\n```\ncode here\n```\nafter", "Before after"),
        ("Read [the guide](https://example.com/guide) now", "Read the guide now"),
        ("## Step one\n### Step two", "Step one Step two"),
        ("  lots   of\n\n whitespace\t", "lots of whitespace"),
    ],
)
def test_filter_strips_markup(raw: str, spoken: str) -> None:
    assert filter_response(raw) == spoken


@pytest.mark.parametrize("raw", ["", "   ", "\n\t\n"])
def test_empty_input_gives_empty_output(raw: str) -> None:
    assert filter_response(raw) == ""


@pytest.mark.parametrize(
    "raw",
    [
        "Hello! *waves excitedly* How are you?",
        "Look at the **glowing star**!",
        "# Title\nBody",
        "Mix of __bold__, `code`, [link](http://x.y) and ```block```",
        "snake_case_name stays",
    ],
)
def test_filter_is_idempotent(raw: str) -> None:
    once = filter_response(raw)
    assert filter_response(once) == once


@pytest.mark.parametrize(
    "raw",
    [
        "**bold *nested* text**",
        "__a_b__",
        "**a*b**",
        "*a **b** c*",
        "_x __y_ z__",
        "**`code` and *aside***",
        "# **Title** _with_ [*link*](http://x.y)",
        "```a``` `b` ```c",
        "\r# heading after carriage return",
    ],
)
def test_nested_markup_is_idempotent(raw: str) -> None:
    once = filter_response(raw)
    assert filter_response(once) == once


def test_nested_emphasis_settles() -> None:
    assert filter_response("**bold *nested* text**") == ""
    assert filter_response("__a_b__") == "ab_"
