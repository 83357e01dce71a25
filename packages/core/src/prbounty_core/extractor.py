"""Free-text bot review → StructuredReview.

The review bot posts the same semantic content in more than one dialect:
markdown (``##`` headings, pipe tables) and HTML/inline-field (``<h3>``
headings, ``<table>`` rows, ``Label: value`` lines, whitespace-aligned
columns). Each field is parsed by an ordered tuple of independent matchers;
the first matcher that returns a value wins. Matchers return None instead of
raising, and extract_review() itself never raises: any unexpected failure is
reported as None (review not yet parseable), never as a partial record.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, NamedTuple

from prbounty_store.models import ReviewIssue, StructuredReview

logger = logging.getLogger(__name__)

MAX_SUMMARY_CHARS = 500
DEFAULT_SUMMARY = "Review completed"

# Text shorter than this with no confidence token is not treated as a review.
MIN_PLAUSIBLE_CHARS = 40

# Files scoring below this (out of 5) are reported as issues.
_FILE_ISSUE_THRESHOLD = 4
_FILE_MODERATE_THRESHOLD = 3

_FLAGS = re.IGNORECASE | re.MULTILINE | re.DOTALL

_TAG_RE = re.compile(r"<[^>]+>")
_FRACTION_RE = re.compile(r"(\d+)\s*/\s*5\b")

# Shared end-of-section lookahead: next markdown/HTML heading or a known terminator.
_SECTION_END = r"(?=^[ \t]*#{1,6}\s|<h[1-6][\s>]|important files|confidence score|\Z)"

_SCORE_LABEL_RE = re.compile(r"confidence\s+score\s*:?\s*(?:\*\*|__)?\s*(\d+)\s*/\s*5", re.IGNORECASE)
_SCORE_BRACKET_RE = re.compile(r"confidence\s+score[^\n\[(\d]{0,20}[\[(]\s*(\d+)\s*/\s*5\s*[\])]", re.IGNORECASE)

_SUMMARY_MARKDOWN_RE = re.compile(r"^[ \t]*#{2,6}[^\n]*summary[^\n]*\n(?P<body>.*?)" + _SECTION_END, _FLAGS)
_SUMMARY_HTML_RE = re.compile(r"<h[1-6][^>]*>[^<]*summary[^<]*</h[1-6]>(?P<body>.*?)" + _SECTION_END, _FLAGS)
_SUMMARY_LINE_RE = re.compile(
    r"^[ \t]*(?:\*\*)?[^\n#<]{0,40}?\bsummary(?:\*\*)?:?[ \t]*\n(?P<body>.*?)" + _SECTION_END, _FLAGS
)

_FILES_SECTION_RE = re.compile(
    r"important files changed(?P<body>.*?)(?=^[ \t]*#{1,6}\s|<h[1-6][\s>]|confidence score|\Z)", _FLAGS
)
_PIPE_SEPARATOR_RE = re.compile(r"^\s*\|?\s*:?-{3,}")
_HTML_ROW_RE = re.compile(r"<tr[^>]*>(.*?)</tr>", _FLAGS)
_HTML_CELL_RE = re.compile(r"<t[dh][^>]*>(.*?)</t[dh]>", _FLAGS)
_LABEL_ROW_RE = re.compile(
    r"filename\s*:[ \t]*(?P<file>[^\n]+)\n\s*score\s*:?[ \t]*(?P<score>\d+)\s*/\s*5[^\n]*\n"
    r"\s*overview\s*:?[ \t]*\n?[ \t]*(?P<overview>[^\n]+)",
    re.IGNORECASE,
)
_COLUMN_ROW_RE = re.compile(
    r"^[ \t]*(?P<file>\S[^\t\n]*?)(?:\t+|[ \t]{2,})(?P<score>\d+)\s*/\s*5(?:\t+|[ \t]+)(?P<overview>\S[^\n]*)$",
    re.MULTILINE,
)


class FileRow(NamedTuple):
    filename: str
    score: int  # out of 5
    overview: str


def _strip_tags(text: str) -> str:
    return _TAG_RE.sub("", text)


def _clean_cell(cell: str) -> str:
    return _strip_tags(cell).strip().strip("`*").strip()


# --------------------------------------------------------------------------- #
# Score matchers                                                              #
# --------------------------------------------------------------------------- #


def _score_from_label(text: str) -> int | None:
    match = _SCORE_LABEL_RE.search(text) or _SCORE_LABEL_RE.search(_strip_tags(text))
    return int(match.group(1)) if match else None


def _score_from_brackets(text: str) -> int | None:
    match = _SCORE_BRACKET_RE.search(text) or _SCORE_BRACKET_RE.search(_strip_tags(text))
    return int(match.group(1)) if match else None


_SCORE_MATCHERS: tuple[Callable[[str], int | None], ...] = (_score_from_label, _score_from_brackets)


# --------------------------------------------------------------------------- #
# Summary matchers                                                            #
# --------------------------------------------------------------------------- #


def _summary_matcher(pattern: re.Pattern) -> Callable[[str], str | None]:
    def match(text: str) -> str | None:
        found = pattern.search(text)
        if not found:
            return None
        body = _strip_tags(found.group("body")).strip()
        return body or None

    return match


_SUMMARY_MATCHERS = (
    _summary_matcher(_SUMMARY_MARKDOWN_RE),
    _summary_matcher(_SUMMARY_HTML_RE),
    _summary_matcher(_SUMMARY_LINE_RE),
)


# --------------------------------------------------------------------------- #
# Important-files row matchers                                                #
# --------------------------------------------------------------------------- #


def _row_from_cells(cells: list[str]) -> FileRow | None:
    if len(cells) < 3:
        return None
    fraction = _FRACTION_RE.search(cells[1])
    if not fraction or not cells[0]:
        return None
    return FileRow(filename=cells[0], score=int(fraction.group(1)), overview=cells[2])


def _rows_from_pipe_table(section: str) -> list[FileRow]:
    rows = []
    for line in section.splitlines():
        if "|" not in line or _PIPE_SEPARATOR_RE.match(line):
            continue
        cells = [_clean_cell(c) for c in line.strip().strip("|").split("|")]
        row = _row_from_cells(cells)
        if row:
            rows.append(row)
    return rows


def _rows_from_html_table(section: str) -> list[FileRow]:
    rows = []
    for row_html in _HTML_ROW_RE.findall(section):
        row = _row_from_cells([_clean_cell(c) for c in _HTML_CELL_RE.findall(row_html)])
        if row:
            rows.append(row)
    return rows


def _rows_from_labels(section: str) -> list[FileRow]:
    return [
        FileRow(_clean_cell(m.group("file")), int(m.group("score")), _clean_cell(m.group("overview")))
        for m in _LABEL_ROW_RE.finditer(section)
    ]


def _rows_from_columns(section: str) -> list[FileRow]:
    return [
        FileRow(_clean_cell(m.group("file")), int(m.group("score")), _clean_cell(m.group("overview")))
        for m in _COLUMN_ROW_RE.finditer(_strip_tags(section))
    ]


_ROW_MATCHERS: tuple[Callable[[str], list[FileRow]], ...] = (
    _rows_from_pipe_table,
    _rows_from_html_table,
    _rows_from_labels,
    _rows_from_columns,
)


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #


def extract_confidence(text: str) -> int | None:
    """Return the raw 0-5 confidence value, or None when no token is present."""
    for matcher in _SCORE_MATCHERS:
        value = matcher(text)
        if value is not None:
            return max(0, min(5, value))
    return None


def extract_summary(text: str) -> str:
    for matcher in _SUMMARY_MATCHERS:
        summary = matcher(text)
        if summary:
            return summary[:MAX_SUMMARY_CHARS]
    return DEFAULT_SUMMARY


def extract_file_rows(text: str) -> list[FileRow]:
    section = _FILES_SECTION_RE.search(text)
    if not section:
        return []
    body = section.group("body")
    for matcher in _ROW_MATCHERS:
        rows = matcher(body)
        if rows:
            return rows
    return []


def rows_to_issues(rows: list[FileRow]) -> tuple[ReviewIssue, ...]:
    issues = []
    for row in rows:
        file_score = max(0, min(5, row.score))
        if file_score >= _FILE_ISSUE_THRESHOLD:
            continue
        issues.append(
            ReviewIssue(
                kind="warning",
                severity="moderate" if file_score < _FILE_MODERATE_THRESHOLD else "minor",
                message=row.overview or f"{row.filename} scored {file_score}/5",
                file=row.filename,
            )
        )
    return tuple(issues)


def extract_review(raw_text: str | None) -> StructuredReview | None:
    """Parse a bot review body. Returns None when the text is not (yet) a usable review."""
    if not isinstance(raw_text, str):
        return None
    try:
        confidence = extract_confidence(raw_text)
        if confidence is None and len(raw_text.strip()) < MIN_PLAUSIBLE_CHARS:
            return None
        score = max(0, min(100, round((confidence or 0) / 5 * 100)))
        return StructuredReview(
            score=score,
            summary=extract_summary(raw_text),
            issues=rows_to_issues(extract_file_rows(raw_text)),
            raw_message=raw_text,
        )
    except Exception as e:
        logger.warning("Could not parse review text (%s): %s", type(e).__name__, e)
        return None
