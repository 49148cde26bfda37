"""Tests for the bounded log reader."""

import logging
from pathlib import Path

import pytest

from botprobe.logtail import LogTail, line_level, parse_structured


class TestLogTail:
    """Tests for marks, bounds and degraded reads."""

    def test_read_since_mark_returns_only_new_lines(self, log_file: Path):
        tail = LogTail(log_file)
        mark = tail.mark()
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("first new\nsecond new\n")

        window = tail.read_since(mark)
        assert window.available
        assert window.lines == ["first new", "second new"]

    def test_reads_are_bounded(self, tmp_path: Path):
        path = tmp_path / "big.log"
        path.write_text("".join(f"line {i}\n" for i in range(1000)), encoding="utf-8")

        window = LogTail(path, tail_lines=50).tail()
        assert len(window.lines) == 50
        assert window.lines[-1] == "line 999"
        assert window.lines[0] == "line 950"

    def test_truncated_file_is_read_from_start(self, log_file: Path):
        tail = LogTail(log_file)
        log_file.write_text("a\n" * 100, encoding="utf-8")
        mark = tail.mark()
        log_file.write_text("rotated\n", encoding="utf-8")

        assert tail.read_since(mark).lines == ["rotated"]

    def test_read_from_returns_every_new_line(self, log_file: Path):
        tail = LogTail(log_file, tail_lines=10)
        cursor = tail.mark()
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("".join(f"line {i}\n" for i in range(50)))

        chunk = tail.read_from(cursor)
        assert len(chunk.lines) == 50
        assert chunk.end == log_file.stat().st_size
        assert tail.read_from(chunk.end).lines == []

    def test_read_from_leaves_partial_line(self, log_file: Path):
        tail = LogTail(log_file)
        cursor = tail.mark()
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("complete\nhalf of a li")

        chunk = tail.read_from(cursor)
        assert chunk.lines == ["complete"]
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("ne\n")
        assert tail.read_from(chunk.end).lines == ["half of a line"]

    def test_read_from_after_truncation(self, log_file: Path):
        tail = LogTail(log_file)
        log_file.write_text("a\n" * 100, encoding="utf-8")
        cursor = tail.mark()
        log_file.write_text("rotated\n", encoding="utf-8")

        chunk = tail.read_from(cursor)
        assert chunk.lines == ["rotated"]
        assert chunk.end == len("rotated\n")

    def test_missing_file_degrades_and_warns_once(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        tail = LogTail(tmp_path / "missing.log", logger=logging.getLogger("logtail_test"))
        with caplog.at_level(logging.WARNING, logger="logtail_test"):
            first = tail.read_since(0)
            second = tail.read_since(0)

        assert not first.available and not second.available
        assert first.lines == []
        assert tail.mark() == 0
        assert len([r for r in caplog.records if "unavailable" in r.message]) == 1

    def test_no_path_configured(self):
        window = LogTail(None).tail()
        assert not window.available
        assert window.lines == []


class TestStructuredLines:
    """Tests for JSON log line parsing."""

    def test_parse_json_line(self):
        assert parse_structured('{"level":"error","msg":"boom"}') == {"level": "error", "msg": "boom"}

    def test_plain_text_is_not_structured(self):
        assert parse_structured("Using context for user 1") is None
        assert parse_structured("{not json") is None
        assert parse_structured("[1, 2]") is None

    def test_line_level(self):
        assert line_level('{"level":"ERROR","msg":"x"}') == "error"
        assert line_level('{"msg":"x"}') is None
        assert line_level("plain") is None
