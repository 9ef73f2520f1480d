"""Tests for src.core.task_state — lifecycle states and the praise/scold verdict."""

from src.core.task_state import (
    TaskState,
    content_words,
    feedback_verdict,
    has_responded,
    is_terminal,
    matches_task,
    state_of,
)
from src.data.models import Task


def _task(**kwargs) -> Task:
    defaults = dict(id=1, user_id=1, task_date="2025-03-10", task_time="09:00", task_name="Study Go")
    defaults.update(kwargs)
    return Task(**defaults)


class TestStateOf:
    def test_planned(self):
        assert state_of(_task()) is TaskState.PLANNED

    def test_reminded(self):
        assert state_of(_task(reminder_sent=True)) is TaskState.REMINDED

    def test_responding_does_not_change_state(self):
        task = _task(reminder_sent=True, user_response="studying go")
        assert state_of(task) is TaskState.REMINDED
        assert has_responded(task)

    def test_terminal_states(self):
        assert state_of(_task(reminder_sent=True, praised=True)) is TaskState.PRAISED
        assert state_of(_task(reminder_sent=True, scolded=True)) is TaskState.SCOLDED
        assert is_terminal(_task(reminder_sent=True, scolded=True))
        assert not is_terminal(_task(reminder_sent=True))

    def test_blank_response_is_not_a_response(self):
        assert not has_responded(_task(user_response="   "))


class TestMatching:
    def test_short_words_ignored(self):
        assert content_words("Go to a gym") == {"gym"}

    def test_case_insensitive_overlap(self):
        assert matches_task("Study Go", "doing go STUDY")

    def test_no_overlap(self):
        assert not matches_task("Study Go", "watching tv")

    def test_only_short_words_never_match(self):
        assert not matches_task("Go", "go")

    def test_punctuation_is_not_part_of_a_word(self):
        assert matches_task("Gym", "at the gym!")

    def test_none_response(self):
        assert not matches_task("Gym", None)


class TestFeedbackVerdict:
    def test_matching_response_is_praised(self):
        task = _task(reminder_sent=True, user_response="go study session")
        assert feedback_verdict(task) is TaskState.PRAISED

    def test_unrelated_response_is_scolded(self):
        task = _task(reminder_sent=True, user_response="watching tv")
        assert feedback_verdict(task) is TaskState.SCOLDED

    def test_no_response_is_scolded(self):
        assert feedback_verdict(_task(reminder_sent=True)) is TaskState.SCOLDED
