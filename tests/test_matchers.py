"""Tests for signal predicates, templates and keyword scoring."""

import logging

import pytest
from pydantic import ValidationError

from botprobe.matchers import (
    first_matching_line,
    match_field,
    render_template,
    resolve_pattern,
    score_keywords,
)
from botprobe.models import MatchStrategy, SignalSource, SignalSpec


LINES = [
    '{"level":"info","msg":"Incoming update","message_id":1001}',
    "Using context for user 830403309",
    '{"level":"error","msg":"AI backend failed"}',
    "Queue message id 1001 was resolved",
]


class TestTemplates:
    """Tests for ${...} placeholder rendering."""

    def test_dotted_placeholders(self):
        context = {"greet.message_id": 17, "message_id": 99}
        assert render_template("reply to ${greet.message_id}", context) == "reply to 17"
        assert render_template("id ${message_id}", context) == "id 99"

    def test_unknown_placeholders_are_left_alone(self):
        assert render_template("id ${missing}", {}) == "id ${missing}"

    def test_regex_values_are_escaped(self):
        spec = SignalSpec(name="x", strategy=MatchStrategy.REGEX, pattern=r"user ${username}\b")
        assert resolve_pattern(spec, {"username": "a.b"}) == r"user a\.b\b"


class TestLogMatching:
    """Tests for matching log signals against lines."""

    def test_contains(self, test_logger: logging.Logger):
        spec = SignalSpec(name="context used", pattern="Using context for user")
        line = first_matching_line(spec, LINES)
        test_logger.info(f"Matched line: {line}")
        assert line == LINES[1]

    def test_templated_pattern(self):
        spec = SignalSpec(name="received", pattern='"message_id":${message_id}')
        assert first_matching_line(spec, LINES, {"message_id": 1001}) == LINES[0]
        assert first_matching_line(spec, LINES, {"message_id": 1002}) is None

    def test_regex(self):
        spec = SignalSpec(name="queue", strategy=MatchStrategy.REGEX, pattern=r"Queue message id \d+ was resolved")
        assert first_matching_line(spec, LINES) == LINES[3]

    def test_case_insensitive(self):
        spec = SignalSpec(name="ctx", pattern="using CONTEXT", case_sensitive=False)
        assert first_matching_line(spec, LINES) == LINES[1]

    def test_level_filter(self):
        spec = SignalSpec(name="errors", level="error")
        assert first_matching_line(spec, LINES) == LINES[2]

        spec = SignalSpec(name="backend error", level="error", pattern="Incoming")
        assert first_matching_line(spec, LINES) is None

    def test_invalid_regex_does_not_match(self):
        spec = SignalSpec(name="bad", strategy=MatchStrategy.REGEX, pattern="(unclosed")
        assert first_matching_line(spec, LINES) is None


class TestFieldMatching:
    """Tests for store signals against a document."""

    DOC = {"chatId": 1, "lastContextReset": "2024-01-01T00:00:00Z", "availableCredits": 12, "currentAI": "gpt-4o", "settings": {"lang": "en"}}

    @pytest.mark.parametrize(
        "spec, expected",
        [
            (SignalSpec(name="p", source=SignalSource.STORE, field="lastContextReset", strategy=MatchStrategy.PRESENT), True),
            (SignalSpec(name="a", source=SignalSource.STORE, field="missing", strategy=MatchStrategy.ABSENT), True),
            (SignalSpec(name="e", source=SignalSource.STORE, field="currentAI", strategy=MatchStrategy.EXACT, expected_value="gpt-4o"), True),
            (SignalSpec(name="c", source=SignalSource.STORE, field="currentAI", strategy=MatchStrategy.CONTAINS, expected_value="GPT", case_sensitive=False), True),
            (SignalSpec(name="r", source=SignalSource.STORE, field="currentAI", strategy=MatchStrategy.REGEX, pattern=r"^gpt-\d"), True),
            (SignalSpec(name="n", source=SignalSource.STORE, field="availableCredits", strategy=MatchStrategy.NUMERIC_RANGE, min_value=0, max_value=10), False),
            (SignalSpec(name="d", source=SignalSource.STORE, field="settings.lang", strategy=MatchStrategy.EXACT, expected_value="en"), True),
        ],
    )
    def test_strategies(self, spec: SignalSpec, expected: bool):
        matched, _ = match_field(spec, self.DOC)
        assert matched is expected

    def test_missing_document(self):
        present = SignalSpec(name="p", source=SignalSource.STORE, field="lastContextReset", strategy=MatchStrategy.PRESENT)
        absent = SignalSpec(name="a", source=SignalSource.STORE, field="lastContextReset", strategy=MatchStrategy.ABSENT)
        assert match_field(present, None) == (False, None)
        assert match_field(absent, None) == (True, None)


class TestSignalSpecValidation:
    """Tests for signal definitions rejected at load time."""

    def test_log_signal_needs_pattern_or_level(self):
        with pytest.raises(ValidationError):
            SignalSpec(name="empty")

    def test_log_signal_rejects_field_strategies(self):
        with pytest.raises(ValidationError):
            SignalSpec(name="x", pattern="y", strategy=MatchStrategy.PRESENT)

    def test_store_signal_needs_field(self):
        with pytest.raises(ValidationError):
            SignalSpec(name="x", source=SignalSource.STORE, strategy=MatchStrategy.PRESENT)


class TestKeywords:
    """Tests for keyword scoring."""

    def test_case_insensitive_substrings(self):
        text = "Retrieved conversation memory: Alex works in LONDON as a software developer"
        found = score_keywords(["london", "лондон", "software developer", "paris"], text)
        assert found == ["london", "software developer"]

    def test_cyrillic(self):
        assert score_keywords(["лондон", "работ"], "Пользователь работает в Лондоне") == ["лондон", "работ"]

    def test_no_keywords(self):
        assert score_keywords([], "anything") == []
