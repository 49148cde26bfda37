"""Signal predicates for the probe harness.

This module matches signal definitions against log lines and per-user
documents, renders `${...}` placeholders in patterns from the run context,
and scores expected keywords against observed text.
"""

import functools
import logging
import re
import string
from typing import Any

from .logtail import line_level
from .models import MatchStrategy, SignalSpec
from .store import get_field


logger = logging.getLogger(__name__)


class ContextTemplate(string.Template):
    """`${name}` placeholders whose names may contain dots (`${greet.message_id}`)."""
    idpattern = r"(?a:[_a-z][_a-z0-9.]*)"


def render_template(template: str, context: dict[str, Any], escape: bool = False) -> str:
    """Substitute `${var}` placeholders from context, leaving unknown ones as-is.

    Args:
        template: Pattern text.
        context: Values keyed by placeholder name.
        escape: Regex-escape substituted values.
    """
    if "$" not in template:
        return template
    values = {
        key: re.escape(str(value)) if escape else str(value)
        for key, value in context.items()
    }
    return ContextTemplate(template).safe_substitute(values)


def resolve_pattern(spec: SignalSpec, context: dict[str, Any] | None = None) -> str | None:
    """The signal's pattern with placeholders rendered."""
    if spec.pattern is None:
        return None
    return render_template(
        spec.pattern,
        context or {},
        escape=spec.strategy == MatchStrategy.REGEX,
    )


@functools.lru_cache(maxsize=256)
def _compile(pattern: str, case_sensitive: bool) -> re.Pattern:
    return re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)


def match_line(spec: SignalSpec, line: str, pattern: str | None) -> bool:
    """Whether one log line satisfies a log signal.

    Args:
        spec: The log signal.
        line: A raw log line.
        pattern: The signal's pattern after placeholder rendering.
    """
    if spec.level is not None and line_level(line) != spec.level.lower():
        return False
    if pattern is None:
        return True

    match spec.strategy:
        case MatchStrategy.CONTAINS:
            if spec.case_sensitive:
                return pattern in line
            return pattern.lower() in line.lower()
        case MatchStrategy.REGEX:
            return bool(_compile(pattern, spec.case_sensitive).search(line))
        case _:
            logger.error(f"Signal '{spec.name}' uses {spec.strategy.value}, which does not apply to log lines")
            return False


def first_matching_line(
    spec: SignalSpec,
    lines: list[str],
    context: dict[str, Any] | None = None,
) -> str | None:
    """The first line matching a log signal, or None."""
    pattern = resolve_pattern(spec, context)
    try:
        for line in lines:
            if match_line(spec, line, pattern):
                return line
    except re.error:
        logger.exception(f"Invalid regex for signal '{spec.name}': {pattern!r}")
    return None


def match_field(
    spec: SignalSpec,
    doc: dict[str, Any] | None,
    context: dict[str, Any] | None = None,
) -> tuple[bool, Any]:
    """Evaluate a store signal against a document.

    Returns:
        (matched, actual field value)
    """
    actual = get_field(doc, spec.field or "")
    logger.debug(
        f"Matching field '{spec.field}' with strategy {spec.strategy.value}: "
        f"expected={spec.expected_value}, actual={actual}"
    )

    match spec.strategy:
        case MatchStrategy.PRESENT:
            return actual is not None, actual
        case MatchStrategy.ABSENT:
            return actual is None, actual

    if actual is None:
        return False, actual

    expected = spec.expected_value
    if isinstance(expected, str):
        expected = render_template(expected, context or {})

    match spec.strategy:
        case MatchStrategy.EXACT:
            if isinstance(expected, str) and isinstance(actual, str) and not spec.case_sensitive:
                return expected.lower() == actual.lower(), actual
            return expected == actual or str(expected) == str(actual), actual
        case MatchStrategy.CONTAINS:
            needle = str(expected if expected is not None else spec.pattern or "")
            haystack = str(actual)
            if not spec.case_sensitive:
                needle, haystack = needle.lower(), haystack.lower()
            return needle in haystack, actual
        case MatchStrategy.REGEX:
            pattern = resolve_pattern(spec, context) or str(expected)
            try:
                return bool(_compile(pattern, spec.case_sensitive).search(str(actual))), actual
            except re.error:
                logger.exception(f"Invalid regex for signal '{spec.name}': {pattern!r}")
                return False, actual
        case MatchStrategy.NUMERIC_RANGE:
            return _match_numeric_range(spec, actual), actual
        case _:
            logger.error(f"Unknown match strategy: {spec.strategy}")
            return False, actual


def _match_numeric_range(spec: SignalSpec, actual: Any) -> bool:
    """Match numeric value within range."""
    try:
        value = float(actual)
    except (TypeError, ValueError):
        return False

    if spec.min_value is not None and value < spec.min_value:
        return False
    if spec.max_value is not None and value > spec.max_value:
        return False
    return True


def score_keywords(keywords: list[str], text: str) -> list[str]:
    """Keywords found in text (case-insensitive substring match), in declaration order."""
    lowered = text.lower()
    found = [kw for kw in keywords if kw and kw.lower() in lowered]
    logger.debug(f"Keywords found {len(found)}/{len(keywords)}: {found}")
    return found
