"""
Field-schema translator for AI-generated page forms.

The document backend asks an AI model to propose form fields for a page
and returns a loosely-typed map of ``{raw field name: definition}``. This
module turns that untrusted map into a typed FormSchema:

- raw names are canonicalized into stable field keys
- each definition is parsed into a closed set of field kinds, with an
  explicit UNKNOWN passthrough for anything the model invents
- a pydantic TypeAdapter validates form values against the schema

Nothing here touches the network. Only a top-level input that is not a
mapping is treated as an error; everything else degrades and is logged.
"""

import logging
import re
from collections.abc import Mapping
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from typing_extensions import NotRequired, TypedDict

logger = logging.getLogger(__name__)


class SchemaTranslationError(Exception):
    """Raised when the generated field map cannot be interpreted at all."""


class FormValidationError(Exception):
    """Raised when form values do not satisfy the schema.

    Attributes:
        errors: {field_key: message} for every failing field.
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        details = "; ".join(f"{key}: {msg}" for key, msg in errors.items())
        super().__init__(f"Form values are invalid: {details}")


# --- Field kinds ---


class FieldKind(str, Enum):
    """Widget kinds the form renderer knows how to draw."""

    TEXT = "text"
    MULTILINE_TEXT = "multi-line text"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    DROPDOWN = "dropdown"
    UNKNOWN = "unknown"


# Spellings the model (or older backends) use for the same kinds
_KIND_ALIASES: dict[str, FieldKind] = {
    "text": FieldKind.TEXT,
    "single-line-text": FieldKind.TEXT,
    "single-line text": FieldKind.TEXT,
    "input": FieldKind.TEXT,
    "multi-line text": FieldKind.MULTILINE_TEXT,
    "multi-line-text": FieldKind.MULTILINE_TEXT,
    "multiline": FieldKind.MULTILINE_TEXT,
    "textarea": FieldKind.MULTILINE_TEXT,
    "checkbox": FieldKind.CHECKBOX,
    "radio": FieldKind.RADIO,
    "radio button": FieldKind.RADIO,
    "single-select-radio": FieldKind.RADIO,
    "dropdown": FieldKind.DROPDOWN,
    "select": FieldKind.DROPDOWN,
    "single-select-dropdown": FieldKind.DROPDOWN,
}

TEXT_KINDS = frozenset({FieldKind.TEXT, FieldKind.MULTILINE_TEXT})
CHOICE_KINDS = frozenset({FieldKind.RADIO, FieldKind.DROPDOWN})

_WHITESPACE_RE = re.compile(r"\s+")


def canonical_key(raw_name: str) -> str:
    """Normalize a raw field name into its canonical form key.

    Every run of whitespace becomes a single underscore and the result
    is lower-cased. The name is not trimmed, so leading or trailing
    whitespace survives as an underscore.

        >>> canonical_key("Full   Name")
        'full_name'
    """
    return _WHITESPACE_RE.sub("_", raw_name).lower()


def parse_kind(raw_kind: Any) -> FieldKind:
    """Map a raw ``type`` value onto a FieldKind (UNKNOWN if unrecognized)."""
    if not isinstance(raw_kind, str):
        return FieldKind.UNKNOWN
    return _KIND_ALIASES.get(raw_kind.strip().lower(), FieldKind.UNKNOWN)


# --- Field definitions ---


class FieldDefinition(BaseModel):
    """One synthesized form field, already sanitized.

    ``raw_kind`` keeps whatever the generator sent so unknown widgets can
    still be reported.
    """

    model_config = ConfigDict(frozen=True)

    kind: FieldKind
    raw_kind: str | None = None
    label: str | None = None
    options: list[str] | None = Field(
        default=None,
        description="Ordered, unique options (radio and dropdown only)",
    )

    @classmethod
    def from_untrusted(cls, raw_name: str, definition: Any) -> "FieldDefinition":
        """Build a definition from one entry of the generated field map.

        Malformed pieces are dropped or downgraded, never raised.
        """
        if not isinstance(definition, Mapping):
            logger.warning(
                "Field '%s' has a non-object definition (%s); treating as unknown",
                raw_name,
                type(definition).__name__,
            )
            return cls(kind=FieldKind.UNKNOWN)

        raw_kind = definition.get("type", definition.get("kind"))
        kind = parse_kind(raw_kind)
        if kind is FieldKind.UNKNOWN:
            logger.warning(
                "Field '%s' has unrecognized type %r; accepting any value",
                raw_name,
                raw_kind,
            )

        label = definition.get("label")
        if label is not None and not isinstance(label, str):
            label = None

        options = _clean_options(raw_name, definition.get("options"))

        if kind in CHOICE_KINDS and not options:
            logger.warning(
                "Field '%s' is a %s without options; rendering as text",
                raw_name,
                kind.value,
            )
            kind = FieldKind.TEXT

        return cls(
            kind=kind,
            raw_kind=raw_kind if isinstance(raw_kind, str) else None,
            label=label or None,
            options=options if kind in CHOICE_KINDS or kind is FieldKind.CHECKBOX else None,
        )


def _clean_options(raw_name: str, raw_options: Any) -> list[str] | None:
    """Keep string options in order, dropping blanks and duplicates."""
    if not isinstance(raw_options, list):
        return None

    seen: set[str] = set()
    options: list[str] = []
    for option in raw_options:
        if isinstance(option, (int, float)) and not isinstance(option, bool):
            option = str(option)
        if not isinstance(option, str) or not option.strip():
            continue
        if option in seen:
            logger.info("Field '%s' lists option %r twice; keeping the first", raw_name, option)
            continue
        seen.add(option)
        options.append(option)

    return options or None


class FieldSpec(NamedTuple):
    """A field as the form sees it: canonical key plus its definition."""

    key: str
    raw_name: str
    definition: FieldDefinition

    @property
    def kind(self) -> FieldKind:
        return self.definition.kind

    @property
    def label(self) -> str:
        return self.definition.label or self.raw_name

    @property
    def options(self) -> list[str]:
        return list(self.definition.options or [])


# --- Validation schema ---


def _value_type(kind: FieldKind) -> Any:
    if kind is FieldKind.CHECKBOX:
        return bool
    if kind is FieldKind.UNKNOWN:
        return Any
    return str


class FormSchema:
    """Validation schema for one generated page form.

    Fields keep the order the generator produced them in. Every field is
    optional: a partially filled form is valid.
    """

    def __init__(self, fields: list[FieldSpec]):
        self._fields: dict[str, FieldSpec] = {spec.key: spec for spec in fields}
        shape = {
            key: NotRequired[_value_type(spec.kind)]
            for key, spec in self._fields.items()
        }
        values_type = TypedDict("GeneratedFormValues", shape)  # type: ignore[misc]
        self._adapter: TypeAdapter = TypeAdapter(values_type)

    @property
    def fields(self) -> list[FieldSpec]:
        return list(self._fields.values())

    def keys(self) -> list[str]:
        return list(self._fields)

    def get(self, key: str) -> FieldSpec | None:
        return self._fields.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def validate(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Validate form values against the schema.

        Keys that are not part of the schema are ignored, matching how a
        controlled form only submits the fields it renders.

        Raises:
            FormValidationError: If any present value has the wrong type.
        """
        try:
            return self._adapter.validate_python(dict(values))
        except ValidationError as e:
            errors: dict[str, str] = {}
            for error in e.errors():
                key = str(error["loc"][0]) if error["loc"] else "__root__"
                errors.setdefault(key, error["msg"])
            raise FormValidationError(errors) from e


class TranslationResult(NamedTuple):
    """Output of translate(): the schema plus canonical → raw key mapping."""

    schema: FormSchema
    key_map: dict[str, str]


def translate(fields: Any) -> TranslationResult:
    """Translate a generated field map into a FormSchema.

    Args:
        fields: The generator's ``{raw field name: definition}`` map.

    Returns:
        A TranslationResult with the schema and canonical → raw key map.

    Raises:
        SchemaTranslationError: If ``fields`` is not a mapping.
    """
    if not isinstance(fields, Mapping):
        raise SchemaTranslationError(
            f"Generated form fields must be an object, got {type(fields).__name__}"
        )

    specs: dict[str, FieldSpec] = {}
    key_map: dict[str, str] = {}

    for raw_name, definition in fields.items():
        if not isinstance(raw_name, str):
            raw_name = str(raw_name)
        key = canonical_key(raw_name)

        if key in specs:
            logger.warning(
                "Fields '%s' and '%s' both normalize to '%s'; keeping '%s'",
                key_map[key],
                raw_name,
                key,
                raw_name,
            )

        specs[key] = FieldSpec(key, raw_name, FieldDefinition.from_untrusted(raw_name, definition))
        key_map[key] = raw_name

    return TranslationResult(FormSchema(list(specs.values())), key_map)
