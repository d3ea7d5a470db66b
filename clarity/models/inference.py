"""
Payload schemas for inference responses and a lenient parser for them.

Model output is parsed field by field: a malformed list entry or a field of
the wrong type is dropped and reported, the rest of the payload still
applies. Unparseable JSON falls back to regex salvage of scalar fields.
"""

import json
import re
import typing
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from clarity.utils.exceptions import ParseError

# ═══════════════════════════════════════════════════════════════════
# EXTRACTION PAYLOAD
# ═══════════════════════════════════════════════════════════════════


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        """Explicit nulls fall back to the field default."""
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class DecisionPayload(_Payload):
    content: str = Field(..., min_length=1, validation_alias=AliasChoices("content", "decision"))
    affects: str = ""
    confidence: str = "medium"


class ActionPayload(_Payload):
    content: str = Field(..., min_length=1, validation_alias=AliasChoices("content", "action"))
    owner: str = "me"
    deadline: str = "TBD"
    priority: str = "medium"


class CommitmentPayload(_Payload):
    who: str = "I"
    what: str = Field(..., min_length=1, validation_alias=AliasChoices("what", "content"))


class UnresolvedPayload(_Payload):
    content: str = Field(..., min_length=1, validation_alias=AliasChoices("content", "question"))
    reason: str = ""


class ExtractionPayload(_Payload):
    """Everything one extraction call may return for a note."""

    title: str | None = None
    tags: list[str] = Field(default_factory=list)
    intent: str | None = None
    intent_confidence: float | None = Field(
        default=None, validation_alias=AliasChoices("intent_confidence", "intentConfidence")
    )
    decisions: list[DecisionPayload] = Field(default_factory=list)
    actions: list[ActionPayload] = Field(default_factory=list)
    commitments: list[CommitmentPayload] = Field(default_factory=list)
    unresolved: list[UnresolvedPayload] = Field(default_factory=list)
    mentioned_people: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("mentioned_people", "mentionedPeople", "people"),
    )
    inferred_project: str | None = Field(
        default=None,
        validation_alias=AliasChoices("inferred_project", "inferredProject", "project"),
    )
    next_step: str | None = Field(
        default=None, validation_alias=AliasChoices("next_step", "nextStep")
    )
    next_step_type: str | None = Field(
        default=None, validation_alias=AliasChoices("next_step_type", "nextStepType")
    )


# ═══════════════════════════════════════════════════════════════════
# DIGEST PAYLOAD
# ═══════════════════════════════════════════════════════════════════


class DigestWarningPayload(_Payload):
    type: str = "stalled"
    content: str = Field(..., min_length=1)
    days_since_issue: int = Field(
        default=0, validation_alias=AliasChoices("days_since_issue", "daysSinceIssue")
    )


class SuggestedActionPayload(_Payload):
    content: str = Field(..., min_length=1)
    reason: str = ""
    project_name: str | None = Field(
        default=None, validation_alias=AliasChoices("project_name", "projectName")
    )
    priority: str = "high"


class DigestPayload(_Payload):
    """What one daily digest call may return."""

    narrative: str | None = Field(
        default=None, validation_alias=AliasChoices("narrative", "summary")
    )
    highlights: list[str] = Field(default_factory=list)
    warnings: list[DigestWarningPayload] = Field(default_factory=list)
    suggested_actions: list[SuggestedActionPayload] = Field(
        default_factory=list,
        validation_alias=AliasChoices("suggested_actions", "suggestedActions", "priorities"),
    )


# ═══════════════════════════════════════════════════════════════════
# LENIENT PARSING
# ═══════════════════════════════════════════════════════════════════


class ParsedPayload(BaseModel):
    """A payload plus the names of fields that could not be parsed."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    payload: Any
    failed_fields: list[str] = Field(default_factory=list)
    salvaged: bool = False

    @property
    def degraded(self) -> bool:
        return self.salvaged or bool(self.failed_fields)


def extract_json(content: str) -> str:
    """
    Extract JSON from content that might have markdown formatting.

    Args:
        content: Raw content that may contain JSON

    Returns:
        Cleaned JSON string
    """
    content = content.strip()

    if "```json" in content:
        content = content.split("```json")[1].split("```")[0].strip()
    elif "```" in content:
        content = content.split("```")[1].split("```")[0].strip()

    # Trim prose around a single top-level object
    start, end = content.find("{"), content.rfind("}")
    if start > 0 and end > start:
        content = content[start : end + 1]

    return content


def _field_keys(name: str, field) -> list[str]:
    alias = field.validation_alias
    if isinstance(alias, AliasChoices):
        return [str(choice) for choice in alias.choices]
    return [name]


def _validate_field(annotation, value) -> tuple[Any, bool]:
    """Validate one value. Lists keep their valid entries. Returns (value, ok)."""
    try:
        return TypeAdapter(annotation).validate_python(value), True
    except PydanticValidationError:
        pass

    if typing.get_origin(annotation) is list and isinstance(value, list):
        (item_type,) = typing.get_args(annotation)
        adapter = TypeAdapter(item_type)
        kept = []
        for item in value:
            try:
                kept.append(adapter.validate_python(item))
            except PydanticValidationError:
                continue
        return kept, False

    raise ValueError("unparseable field")


def parse_lenient(model: type[BaseModel], data: dict[str, Any]) -> ParsedPayload:
    """
    Build model from data one field at a time.

    Args:
        model: Payload model whose fields all have defaults
        data: Decoded JSON object

    Returns:
        ParsedPayload with the fields that failed listed
    """
    values: dict[str, Any] = {}
    failed: list[str] = []

    for name, field in model.model_fields.items():
        key = next((k for k in _field_keys(name, field) if k in data), None)
        if key is None or data[key] is None:
            continue
        try:
            value, ok = _validate_field(field.annotation, data[key])
        except ValueError:
            failed.append(name)
            continue
        values[name] = value
        if not ok:
            failed.append(name)

    return ParsedPayload(
        payload=model.model_construct(**_with_defaults(model, values)), failed_fields=failed
    )


def _with_defaults(model: type[BaseModel], values: dict[str, Any]) -> dict[str, Any]:
    full = {}
    for name, field in model.model_fields.items():
        if name in values:
            full[name] = values[name]
        else:
            full[name] = field.get_default(call_default_factory=True)
    return full


_SCALAR_PATTERN = r'"{key}"\s*:\s*"((?:[^"\\]|\\.)*)"'


def _salvage(model: type[BaseModel], raw: str) -> ParsedPayload:
    """Regex out quoted scalar string fields from broken JSON."""
    values: dict[str, Any] = {}
    for name, field in model.model_fields.items():
        if field.annotation not in (str, str | None):
            continue
        for key in _field_keys(name, field):
            match = re.search(_SCALAR_PATTERN.format(key=re.escape(key)), raw)
            if match:
                try:
                    values[name] = json.loads(f'"{match.group(1)}"')
                except json.JSONDecodeError:
                    values[name] = match.group(1)
                break

    if not values:
        raise ParseError("Response is not JSON and no fields could be salvaged", {"raw": raw[:200]})

    failed = [name for name in model.model_fields if name not in values]
    return ParsedPayload(
        payload=model.model_construct(**_with_defaults(model, values)),
        failed_fields=failed,
        salvaged=True,
    )


def parse_payload(model: type[BaseModel], raw: str) -> ParsedPayload:
    """
    Parse a raw model response into model.

    Raises:
        ParseError: If nothing at all could be recovered
    """
    cleaned = extract_json(raw or "")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return _salvage(model, cleaned)

    if not isinstance(data, dict):
        raise ParseError("Response JSON is not an object", {"type": type(data).__name__})

    return parse_lenient(model, data)
