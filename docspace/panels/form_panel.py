"""
Form panel controller.

Drives one page's generated form:

    mount:  page text → generate fields → translate → saved data → initialize
    edit:   apply_edit on the live FormState
    save:   validate → serialize → persist; the saved state becomes the baseline

A failed save keeps the user's edits. A generator response that is not a
field map puts the panel in the ERROR state without rendering a form.
"""

import logging
from typing import Any

from pydantic import BaseModel

from docspace.client.backend import BackendError
from docspace.core.field_schema import (
    FieldKind,
    FieldSpec,
    FormSchema,
    FormValidationError,
    SchemaTranslationError,
    translate,
)
from docspace.core.form_state import FormState, apply_edit, decode_persisted, initialize, serialize
from docspace.panels.base import Notification, NotificationLevel, PanelController, PanelStatus

logger = logging.getLogger(__name__)


# --- View models ---


class FieldView(BaseModel):
    """Everything a browser needs to draw one form control."""

    key: str
    label: str
    kind: FieldKind
    options: list[str] = []
    placeholder: str | None = None
    control_label: str | None = None
    value: Any = None


class FormPanelView(BaseModel):
    """Snapshot of the form panel for rendering."""

    project_id: int
    page_number: int
    status: str
    error: str | None = None
    has_page_text: bool = False
    fields: list[FieldView] = []
    values: dict[str, Any] = {}
    dirty: bool = False
    saving: bool = False
    notifications: list[Notification] = []


def build_field_view(spec: FieldSpec, value: Any) -> FieldView:
    """Describe one field the way the form renderer draws it."""
    label = spec.label
    placeholder = None
    control_label = None

    match spec.kind:
        case FieldKind.TEXT | FieldKind.MULTILINE_TEXT:
            placeholder = f"Enter {label.lower()}"
        case FieldKind.DROPDOWN:
            placeholder = f"Select {label.lower()}"
        case FieldKind.CHECKBOX:
            # Generated checkboxes often carry their caption as the single option
            control_label = spec.options[0] if spec.options else label

    return FieldView(
        key=spec.key,
        label=label,
        kind=spec.kind,
        options=spec.options,
        placeholder=placeholder,
        control_label=control_label,
        value=value,
    )


# --- Controller ---


class FormPanel(PanelController):
    """Controller for the dynamic form of one document page.

    Args:
        backend: Collaborator for page text and form persistence
            (a BackendClient).
        project_id: The document's project id.
        page_number: 1-based page number.
        generator: Optional field generator; defaults to ``backend``.
            Anything with ``async generate_form_fields(project_id, page_number)``.
    """

    def __init__(self, backend: Any, project_id: int, page_number: int, generator: Any = None):
        super().__init__()
        self._backend = backend
        self._generator = generator or backend
        self.project_id = project_id
        self.page_number = page_number

        self.page_text: str = ""
        self.schema: FormSchema | None = None
        self.key_map: dict[str, str] = {}
        self.state: FormState = {}
        self.baseline: FormState = {}
        self.saving = False
        self._save_seq = 0
        self._saves_in_flight = 0

    @property
    def dirty(self) -> bool:
        return self.state != self.baseline

    # -----------------------------------------------------------------
    # Mount
    # -----------------------------------------------------------------

    async def mount(self) -> None:
        """Load the page's form: text, generated fields and saved values."""
        token = self._begin_mount()
        self._discard_state()

        try:
            page_text = await self._backend.get_page_text(self.project_id, self.page_number)
            if not self._is_current(token):
                return
            self.page_text = page_text

            raw_fields = await self._generator.generate_form_fields(
                self.project_id, self.page_number
            )
            if not self._is_current(token):
                return

            result = translate(raw_fields)

            persisted = await self._backend.get_form_data(self.project_id, self.page_number)
            if not self._is_current(token):
                return
        except SchemaTranslationError as e:
            if self._is_current(token):
                logger.error(
                    "Generated fields for project %s page %s are malformed: %s",
                    self.project_id,
                    self.page_number,
                    e,
                )
                self._fail("Error Generating Form", str(e))
            return
        except BackendError as e:
            if self._is_current(token):
                self._fail("Error Loading Form", e.message)
            return
        except Exception as e:
            if self._is_current(token):
                logger.error("Unexpected error loading form panel: %s", e, exc_info=True)
                self._fail("Error Loading Form", "Could not generate form fields.")
            return

        self.schema = result.schema
        self.key_map = result.key_map
        saved = decode_persisted(persisted)
        if saved is None:
            self.notify(
                "Saved Data Unavailable",
                "Could not load previously saved form data.",
                NotificationLevel.WARNING,
            )
        self.state = initialize(result.schema, saved or {})
        self.baseline = dict(self.state)

        if len(result.schema) == 0:
            self.status = PanelStatus.EMPTY
            logger.info(
                "No form fields generated for project %s page %s",
                self.project_id,
                self.page_number,
            )
        else:
            self.status = PanelStatus.READY
            logger.info(
                "Form panel ready for project %s page %s: %d fields, %d saved values",
                self.project_id,
                self.page_number,
                len(result.schema),
                len(self.state),
            )

    # -----------------------------------------------------------------
    # Editing and saving
    # -----------------------------------------------------------------

    def edit(self, key: str, value: Any) -> FormState:
        """Apply one user edit.

        Raises:
            RuntimeError: If the form is not loaded.
            UnknownFieldError: If ``key`` is not a field of this form.
            FormValueError: If the value does not fit the field.
        """
        if self.schema is None or self.status is not PanelStatus.READY:
            raise RuntimeError("Form panel is not ready for edits")
        self.state = apply_edit(self.state, self.schema, key, value)
        return self.state

    def edit_many(self, values: dict[str, Any]) -> FormState:
        """Apply several edits at once; nothing is applied if any edit fails."""
        if self.schema is None or self.status is not PanelStatus.READY:
            raise RuntimeError("Form panel is not ready for edits")
        state = self.state
        for key, value in values.items():
            state = apply_edit(state, self.schema, key, value)
        self.state = state
        return self.state

    async def save(self) -> bool:
        """Persist the current form state.

        On success the saved snapshot becomes the new baseline, unless a
        newer save was issued meanwhile. On failure the in-progress edits
        stay as they are and a notification is raised.

        Returns:
            True if the backend accepted the save.
        """
        if self.schema is None or self.status is not PanelStatus.READY:
            logger.warning("Ignoring save on form panel in state %s", self.status.value)
            return False

        token = self._mount_token
        snapshot = dict(self.state)

        try:
            self.schema.validate(snapshot)
        except FormValidationError as e:
            self.notify("Save Failed", str(e), NotificationLevel.ERROR)
            return False

        self._save_seq += 1
        seq = self._save_seq
        self._saves_in_flight += 1
        self.saving = True
        try:
            await self._backend.save_form_data(self.project_id, self.page_number, serialize(snapshot))
        except BackendError as e:
            if self._is_current(token):
                self.notify(
                    "Save Failed",
                    e.message or "Could not save form data.",
                    NotificationLevel.ERROR,
                )
            return False
        except Exception as e:
            logger.error("Unexpected error saving form data: %s", e, exc_info=True)
            if self._is_current(token):
                self.notify("Save Failed", "Could not save form data.", NotificationLevel.ERROR)
            return False
        finally:
            if self._is_current(token):
                self._saves_in_flight -= 1
                self.saving = self._saves_in_flight > 0

        if not self._is_current(token):
            return True

        # An older save finishing late must not overwrite a newer baseline
        if seq == self._save_seq:
            self.baseline = snapshot
        self.notify("Form Saved", "Your responses have been saved successfully.")
        return True

    # -----------------------------------------------------------------
    # Rendering
    # -----------------------------------------------------------------

    def view(self) -> FormPanelView:
        fields = []
        if self.schema is not None:
            fields = [build_field_view(spec, self.state.get(spec.key)) for spec in self.schema.fields]
        return FormPanelView(
            project_id=self.project_id,
            page_number=self.page_number,
            status=self.status.value,
            error=self.error,
            has_page_text=bool(self.page_text.strip()),
            fields=fields,
            values=dict(self.state),
            dirty=self.dirty,
            saving=self.saving,
            notifications=list(self.notifications),
        )

    # -----------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------

    def _discard_state(self) -> None:
        self.page_text = ""
        self.schema = None
        self.key_map = {}
        self.state = {}
        self.baseline = {}
        self.saving = False
        self._saves_in_flight = 0
