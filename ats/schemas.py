"""Submission payload schema.

The wire format is camelCase JSON. Every optional text field shares one
normalizer, ``blank_to_none``, so "absent" and "empty string" mean the same
thing everywhere downstream and no rule has to re-check for blanks.
Required fields are typed as optional here on purpose: missing values are
reported by the field validator with a readable message instead of a
schema error.
"""
from __future__ import annotations

from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def blank_to_none(value: Any) -> Any:
    """Trim strings and turn empty ones into None."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def normalize_email(value: Any) -> Any:
    value = blank_to_none(value)
    if isinstance(value, str):
        return value.lower()
    return value


OptionalText = Annotated[str | None, BeforeValidator(blank_to_none)]
NormalizedEmail = Annotated[str | None, BeforeValidator(normalize_email)]


def none_to_empty(value: Any) -> Any:
    return [] if value is None else value


class PayloadModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class SubRecordIn(PayloadModel):
    """Fields shared by education and experience entries."""
    start_date: OptionalText = None
    end_date: OptionalText = None
    ongoing: bool = Field(default=False, validation_alias=AliasChoices("ongoing", "current"))
    description: OptionalText = None


class EducationIn(SubRecordIn):
    institution: OptionalText = None
    degree: OptionalText = None
    field_of_study: OptionalText = None


class ExperienceIn(SubRecordIn):
    company: OptionalText = None
    position: OptionalText = None


class CandidatePayload(PayloadModel):
    """Structured part of a submission."""
    first_name: OptionalText = None
    last_name: OptionalText = None
    email: NormalizedEmail = None
    phone: OptionalText = None
    address: OptionalText = None
    linked_in: OptionalText = None
    portfolio: OptionalText = None
    educations: Annotated[list[EducationIn], BeforeValidator(none_to_empty)] = Field(default_factory=list)
    experiences: Annotated[list[ExperienceIn], BeforeValidator(none_to_empty)] = Field(default_factory=list)
