"""Fast-path answers that skip the model."""

import os
import re
from zoneinfo import available_timezones

import pytest

from agent import evaluate_math, route_intent


def test_time():
    answer = route_intent("What time is it?")
    assert re.fullmatch(r"It's \d{2}:\d{2}:\d{2}", answer)


def test_time_in_city():
    if "Asia/Tokyo" not in available_timezones():
        pytest.skip("no timezone database installed")
    answer = route_intent("what's the time in tokyo?")
    assert answer.endswith(" in Asia/Tokyo")


def test_date():
    assert route_intent("what's the date").startswith("Today is ")


def test_list_files(project):
    os.makedirs(os.path.join(project, "docs"))
    with open(os.path.join(project, "docs", "guide.md"), "w") as f:
        f.write("# Guide\n")
    answer = route_intent("list files in docs", working_directory=project)
    assert answer.splitlines()[0] == "Directory: docs"
    assert "guide.md" in answer


def test_read_file(project):
    with open(os.path.join(project, "notes.txt"), "w") as f:
        f.write("remember the milk\n")
    answer = route_intent("cat notes.txt", working_directory=project)
    assert answer.startswith("File: notes.txt")
    assert "remember the milk" in answer


def test_read_missing_file(project):
    assert route_intent("read nope.txt", working_directory=project) == "Error: File not found: nope.txt"


@pytest.mark.parametrize("expression, expected", [
    ("2 + 3 * 4", "14"),
    ("10 / 4", "2.5"),
    ("(1 + 2) ** 3", "27"),
    ("-5 + 2", "-3"),
])
def test_math(expression, expected):
    assert evaluate_math(expression) == expected


@pytest.mark.parametrize("expression", ["1 / 0", "2 ** 1000", "42", "__import__('os')", "2 +"])
def test_math_rejects(expression):
    assert evaluate_math(expression) is None


def test_math_through_router():
    assert route_intent("2 + 3 * 4") == "14"


def test_everything_else_goes_to_the_agent(project):
    assert route_intent("refactor the parser to use a state machine", working_directory=project) is None
    assert route_intent("", working_directory=project) is None
