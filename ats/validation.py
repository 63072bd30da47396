"""Field validation for candidate submissions.

Rules are plain data: a field, a predicate and the message reported when the
predicate fails. Rule sets are passed explicitly to ``validate_candidate``;
``DEFAULT_RULES`` is only the default argument. Validation never raises and
reports every failing rule. A field whose required rule failed gets no
further messages.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Sequence

from pydantic import HttpUrl, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from .schemas import CandidatePayload, SubRecordIn

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^(?:[^\W\d_]|[\s'-])+$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@(?:[^@\s.]+\.)+[^@\s.]+$")
PHONE_PATTERN = re.compile(r"^[+]?[(]?[0-9]{1,4}[)]?[-\s.]?[(]?[0-9]{1,4}[)]?[-\s.]?[0-9]{1,9}$")

# Column sizes in models.py
EMAIL_MAX_LENGTH = 254
LINK_MAX_LENGTH = 500
TEXT_MAX_LENGTH = 255

_HTTP_URL = TypeAdapter(HttpUrl)

Predicate = Callable[[Any, Any], bool]


@dataclass(frozen=True)
class FieldViolation:
    """A single failed rule, addressed by its wire field path."""
    field: str
    message: str


@dataclass(frozen=True)
class Rule:
    """One check on one field.

    ``check`` receives the field value and the whole record, so cross-field
    rules (date ranges) use the same shape as single-field ones. A rule is
    skipped for an absent value unless ``when_absent`` is set.
    """
    field: str
    check: Predicate
    message: str
    when_absent: bool = False


@dataclass(frozen=True)
class RuleSet:
    """Rules for a candidate and for each kind of nested entry."""
    candidate: Sequence[Rule] = ()
    education: Sequence[Rule] = ()
    experience: Sequence[Rule] = ()


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def parse_date(value: str | None) -> date | None:
    """Parse an ISO-8601 date or datetime string; None if unparseable."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def is_url(value: str) -> bool:
    """Well-formed http(s) URL; a missing scheme is assumed to be https."""
    candidate = value if "://" in value else f"https://{value}"
    try:
        url = _HTTP_URL.validate_python(candidate)
    except ValidationError:
        return False
    return bool(url.host and "." in url.host)


def ends_after_start(end_value: str, record: SubRecordIn) -> bool:
    start = parse_date(record.start_date)
    end = parse_date(end_value)
    if start is None or end is None:
        # Parse failures are reported by their own rules
        return True
    return end > start


# ---------------------------------------------------------------------------
# Rule builders
# ---------------------------------------------------------------------------

def required(name: str, message: str) -> Rule:
    return Rule(name, lambda value, _: value is not None, message, when_absent=True)


def length_between(name: str, low: int, high: int, message: str) -> Rule:
    return Rule(name, lambda value, _: low <= len(value) <= high, message)


def max_length(name: str, high: int, message: str) -> Rule:
    return Rule(name, lambda value, _: len(value) <= high, message)


def matches(name: str, pattern: re.Pattern, message: str) -> Rule:
    return Rule(name, lambda value, _: bool(pattern.fullmatch(value)), message)


def url(name: str, message: str) -> Rule:
    return Rule(name, lambda value, _: is_url(value), message)


def iso_date(name: str, message: str) -> Rule:
    return Rule(name, lambda value, _: parse_date(value) is not None, message)


def person_name(name: str, label: str) -> list[Rule]:
    return [
        required(name, f"{label} is required"),
        length_between(name, 2, 50, f"{label} must be between 2 and 50 characters"),
        matches(name, NAME_PATTERN, f"{label} contains invalid characters"),
    ]


def required_text(name: str, label: str, high: int = TEXT_MAX_LENGTH) -> list[Rule]:
    return [
        required(name, f"{label} is required"),
        max_length(name, high, f"{label} must not exceed {high} characters"),
    ]


def date_range() -> list[Rule]:
    """Start/end rules shared by every nested entry.

    An ongoing entry must not carry an end date; a finished one needs an end
    date strictly after its start date.
    """
    return [
        required("start_date", "Start date is required"),
        iso_date("start_date", "Invalid start date format"),
        Rule(
            "end_date",
            lambda value, record: not record.ongoing,
            "End date must be empty for an ongoing entry",
        ),
        Rule(
            "end_date",
            lambda value, record: record.ongoing or value is not None,
            "End date is required unless the entry is ongoing",
            when_absent=True,
        ),
        iso_date("end_date", "Invalid end date format"),
        Rule("end_date", ends_after_start, "End date must be after start date"),
    ]


CANDIDATE_RULES: tuple[Rule, ...] = (
    *person_name("first_name", "First name"),
    *person_name("last_name", "Last name"),
    required("email", "Email is required"),
    max_length("email", EMAIL_MAX_LENGTH, f"Email must not exceed {EMAIL_MAX_LENGTH} characters"),
    matches("email", EMAIL_PATTERN, "Please provide a valid email address"),
    required("phone", "Phone number is required"),
    matches("phone", PHONE_PATTERN, "Please provide a valid phone number"),
    max_length("address", 200, "Address must not exceed 200 characters"),
    max_length("linked_in", LINK_MAX_LENGTH, f"LinkedIn URL must not exceed {LINK_MAX_LENGTH} characters"),
    url("linked_in", "Please provide a valid LinkedIn URL"),
    max_length("portfolio", LINK_MAX_LENGTH, f"Portfolio URL must not exceed {LINK_MAX_LENGTH} characters"),
    url("portfolio", "Please provide a valid portfolio URL"),
)

EDUCATION_RULES: tuple[Rule, ...] = (
    *required_text("institution", "Institution name"),
    *required_text("degree", "Degree"),
    *required_text("field_of_study", "Field of study"),
    *date_range(),
)

EXPERIENCE_RULES: tuple[Rule, ...] = (
    *required_text("company", "Company name"),
    *required_text("position", "Position"),
    *date_range(),
)

DEFAULT_RULES = RuleSet(
    candidate=CANDIDATE_RULES,
    education=EDUCATION_RULES,
    experience=EXPERIENCE_RULES,
)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _passes(rule: Rule, value: Any, record: Any) -> bool:
    if value is None and not rule.when_absent:
        return True
    try:
        return bool(rule.check(value, record))
    except Exception:
        logger.exception(f"Rule for {rule.field!r} raised; treating as a violation")
        return False


def check_record(record: Any, rules: Sequence[Rule], prefix: str = "") -> list[FieldViolation]:
    """Apply ``rules`` to one record, reporting every failing rule.

    Once a field is reported as missing its remaining rules are skipped.
    """
    violations: list[FieldViolation] = []
    missing: set[str] = set()

    for rule in rules:
        if rule.field in missing:
            continue
        value = getattr(record, rule.field, None)
        if not _passes(rule, value, record):
            if value is None:
                missing.add(rule.field)
            violations.append(FieldViolation(f"{prefix}{to_camel(rule.field)}", rule.message))

    return violations


def validate_candidate(
    payload: CandidatePayload,
    rules: RuleSet = DEFAULT_RULES,
) -> list[FieldViolation]:
    """Validate a parsed submission payload.

    Args:
        payload: Normalized payload (blanks already turned into None)
        rules: Rule set to apply

    Returns:
        Every violation found; an empty list means the payload is valid
    """
    violations = check_record(payload, rules.candidate)

    for index, education in enumerate(payload.educations):
        violations.extend(check_record(education, rules.education, f"educations[{index}]."))

    for index, experience in enumerate(payload.experiences):
        violations.extend(check_record(experience, rules.experience, f"experiences[{index}]."))

    return violations


def schema_violations(error: ValidationError) -> list[FieldViolation]:
    """Turn a pydantic schema error into field violations with wire paths."""
    violations = []
    for item in error.errors():
        path = ""
        for part in item["loc"]:
            if isinstance(part, int):
                path += f"[{part}]"
            else:
                path += f".{part}" if path else str(part)
        violations.append(FieldViolation(path or "candidateData", item["msg"]))
    return violations
