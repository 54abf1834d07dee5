"""
Form state reconciler for generated page forms.

A page form has three sources of truth:
- the field schema generated for the page (see field_schema)
- values persisted by an earlier save, as a JSON string
- live edits made by the user

FormState is a plain ``{canonical key: value}`` dict. Every function here
is pure: it returns a new dict and never mutates its input. The panel
controller owns the current state and decides when to save it.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from docspace.core.field_schema import CHOICE_KINDS, FieldKind, FieldSpec, FormSchema

logger = logging.getLogger(__name__)

FormValue = str | bool | int | float | list[str]
FormState = dict[str, Any]

_TRUE_STRINGS = frozenset({"true", "on", "yes", "1", "checked"})
_FALSE_STRINGS = frozenset({"false", "off", "no", "0", ""})


class UnknownFieldError(KeyError):
    """Raised when an edit targets a key that is not in the current schema."""

    def __init__(self, field_key: str):
        self.field_key = field_key
        super().__init__(f"Field '{field_key}' does not exist in the form schema")

    def __str__(self) -> str:
        return self.args[0]


class FormValueError(ValueError):
    """Raised when a value cannot be coerced to its field's kind."""

    def __init__(self, field_key: str, message: str):
        self.field_key = field_key
        self.message = message
        super().__init__(f"Field '{field_key}': {message}")


# -----------------------------------------------------------------
# Reconciliation
# -----------------------------------------------------------------


def decode_persisted(persisted: str | None) -> dict[str, Any] | None:
    """Decode the JSON string from the last save.

    Returns:
        The saved ``{key: value}`` object, ``{}`` if nothing was saved, or
        None if the saved data is unreadable.
    """
    if persisted is None or not persisted.strip():
        return {}

    try:
        raw = json.loads(persisted)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("Discarding unreadable saved form data: %s", e)
        return None

    if not isinstance(raw, dict):
        logger.warning(
            "Discarding saved form data: expected a JSON object, got %s",
            type(raw).__name__,
        )
        return None
    return raw


def initialize(schema: FormSchema, persisted: str | Mapping[str, Any] | None) -> FormState:
    """Build the initial FormState for a freshly loaded schema.

    A corrupt persisted blob never blocks the form: it is logged and the
    user starts from an empty form. Keys that are no longer part of the
    schema are dropped, as are values that no longer fit their field.

    Args:
        schema: The schema translated from the generated fields.
        persisted: The JSON string from the last save, an object already
            decoded with decode_persisted, or None.

    Returns:
        A new FormState containing only keys present in the schema.
    """
    raw = persisted if isinstance(persisted, Mapping) else decode_persisted(persisted)
    if raw is None:
        return {}

    state: FormState = {}
    for key, value in raw.items():
        spec = schema.get(key)
        if spec is None:
            logger.debug("Dropping saved value for '%s': not in current schema", key)
            continue
        try:
            state[key] = coerce_value(spec, value)
        except FormValueError as e:
            logger.warning("Dropping saved value: %s", e)

    return state


def apply_edit(state: Mapping[str, Any], schema: FormSchema, key: str, value: Any) -> FormState:
    """Return a new FormState with one field updated.

    The value is coerced to the type implied by the field's kind, so a
    checkbox edit of ``"true"`` is stored as ``True``.

    Raises:
        UnknownFieldError: If ``key`` is not in the schema.
        FormValueError: If the value cannot be coerced.
    """
    spec = schema.get(key)
    if spec is None:
        raise UnknownFieldError(key)

    updated = dict(state)
    updated[key] = coerce_value(spec, value)
    return updated


def serialize(state: Mapping[str, Any]) -> str:
    """Encode a FormState as the JSON object sent to form persistence."""
    return json.dumps(dict(state), ensure_ascii=False)


# -----------------------------------------------------------------
# Coercion per field kind
# -----------------------------------------------------------------


def coerce_value(spec: FieldSpec, value: Any) -> Any:
    """Coerce a raw UI or persisted value to the shape its field expects.

    Raises:
        FormValueError: If the value has no sensible interpretation.
    """
    match spec.kind:
        case FieldKind.CHECKBOX:
            return _coerce_checkbox(spec, value)
        case FieldKind.TEXT | FieldKind.MULTILINE_TEXT:
            return _coerce_text(spec, value)
        case FieldKind.RADIO | FieldKind.DROPDOWN:
            return _coerce_choice(spec, value)
        case _:
            return _coerce_passthrough(spec, value)


def _coerce_checkbox(spec: FieldSpec, value: Any) -> bool:
    """Checkbox values are booleans, whatever the widget reports."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise FormValueError(spec.key, f"{value!r} is not a valid checkbox value")


def _coerce_text(spec: FieldSpec, value: Any) -> str:
    """Text values are strings; numbers typed into inputs are kept as text."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise FormValueError(spec.key, f"expected text, got {type(value).__name__}")


def _coerce_choice(spec: FieldSpec, value: Any) -> str:
    """Radio and dropdown values must be one of the field's options (or empty)."""
    text = _coerce_text(spec, value)
    if text and spec.kind in CHOICE_KINDS and text not in spec.options:
        raise FormValueError(
            spec.key,
            f"'{text}' is not a valid option. Choose from: {spec.options}",
        )
    return text


def _coerce_passthrough(spec: FieldSpec, value: Any) -> Any:
    """Unknown widgets accept any JSON-compatible form value."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    raise FormValueError(spec.key, f"unsupported value type {type(value).__name__}")
