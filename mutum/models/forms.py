"""
Form Models - Pydantic models for the schema-driven onboarding form.

A FormSchema is static, declarative data (sections of typed fields).
A FormDocument is the stored answer sheet of one user, whose free-form
content is only interpreted through the schema at render time.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List, Any, Dict
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


# ============================================================================
# Enums
# ============================================================================

class FieldType(str, Enum):
    """Field variants understood by the renderer."""
    TEXT = "text"
    EMAIL = "email"
    TEL = "tel"
    NUMBER = "number"
    DATE = "date"
    COLOR_PICKER = "color_picker"
    TEXTAREA = "textarea"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX_GROUP = "checkbox_group"
    FILE_UPLOAD = "file_upload"
    SLIDER_RANGE = "slider_range"
    REPEATER = "repeater"
    GROUP = "group"
    SECTION_TITLE = "section_title"


class FormStatus(str, Enum):
    """Lifecycle of a stored form document."""
    DRAFT = "draft"
    SUBMITTED = "submitted"


SCALAR_TYPES = {
    FieldType.TEXT,
    FieldType.EMAIL,
    FieldType.TEL,
    FieldType.NUMBER,
    FieldType.DATE,
    FieldType.COLOR_PICKER,
    FieldType.TEXTAREA,
}
CHOICE_TYPES = {FieldType.SELECT, FieldType.RADIO, FieldType.CHECKBOX_GROUP}
CONTAINER_TYPES = {FieldType.GROUP, FieldType.REPEATER}


# ============================================================================
# Schema Definition
# ============================================================================

class FieldOption(BaseModel):
    """One choice of a select/radio/checkbox_group field."""

    label: str
    value: str
    detail: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_plain(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"label": data, "value": data}
        if isinstance(data, dict) and "value" not in data and "label" in data:
            return {**data, "value": data["label"]}
        return data


class FieldSchema(BaseModel):
    """A single field, possibly a container of nested fields."""

    model_config = ConfigDict(extra="allow")

    key: str
    type: FieldType
    label: str = ""
    required: bool = False
    options: List[FieldOption] = Field(default_factory=list)
    fields: List["FieldSchema"] = Field(default_factory=list)
    min_items: Optional[int] = Field(default=None, ge=0)
    max_items: Optional[int] = Field(default=None, ge=1)
    placeholder: Optional[str] = None
    description: Optional[str] = None
    display_target: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: Any) -> Any:
        # Older configs spell the multi-line variant "text_area"
        if value == "text_area":
            return FieldType.TEXTAREA.value
        return value

    @model_validator(mode="after")
    def _check_children(self) -> "FieldSchema":
        if self.type in CONTAINER_TYPES:
            if not self.fields:
                raise ValueError(f"Container field '{self.key}' needs nested fields")
            for child in self.fields:
                if child.type in CONTAINER_TYPES:
                    raise ValueError(
                        f"Field '{self.key}.{child.key}': containers cannot be nested"
                    )
            _check_unique_keys(self.fields, self.key)
        elif self.fields:
            raise ValueError(f"Only group/repeater fields may declare nested fields ('{self.key}')")

        if self.type == FieldType.REPEATER and self.min_items is not None and self.max_items is not None:
            if self.min_items > self.max_items:
                raise ValueError(f"Repeater '{self.key}': min_items exceeds max_items")
        return self

    @property
    def is_container(self) -> bool:
        return self.type in CONTAINER_TYPES

    @property
    def carries_value(self) -> bool:
        return self.type != FieldType.SECTION_TITLE

    def option_labels(self) -> List[str]:
        return [option.label for option in self.options]


class FormSection(BaseModel):
    """A wizard step."""

    id: str
    title: str
    description: Optional[str] = None
    fields: List[FieldSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_keys(self) -> "FormSection":
        _check_unique_keys(self.fields, self.id)
        return self


class WelcomeMessage(BaseModel):
    title: str
    text: str
    button_label: str


class FormSchema(BaseModel):
    """The full form definition: meta data, welcome screen and sections."""

    meta: Dict[str, str] = Field(default_factory=dict)
    welcome_message: Optional[WelcomeMessage] = None
    sections: List[FormSection]

    @model_validator(mode="after")
    def _check_keys(self) -> "FormSchema":
        # All sections write into one content document
        _check_unique_keys([f for s in self.sections for f in s.fields], "form")
        return self

    @property
    def section_count(self) -> int:
        return len(self.sections)

    def iter_fields(self):
        for section in self.sections:
            yield from section.fields

    def find_field(self, key: str) -> Optional[FieldSchema]:
        for field in self.iter_fields():
            if field.key == key:
                return field
        return None


def _check_unique_keys(fields: List[FieldSchema], container: str):
    seen = set()
    for field in fields:
        if field.key in seen:
            raise ValueError(f"Duplicate field key '{field.key}' in '{container}'")
        seen.add(field.key)


# ============================================================================
# Stored Document
# ============================================================================

class FormDocument(BaseModel):
    """Form document from the user_forms table."""

    model_config = ConfigDict(from_attributes=True)

    slug: str
    user_id: UUID
    content: Dict[str, Any] = Field(default_factory=dict)
    status: FormStatus = FormStatus.DRAFT
    last_submitted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("content", mode="before")
    @classmethod
    def _content_default(cls, value: Any) -> Any:
        return value or {}


# ============================================================================
# Render Output
# ============================================================================

class RenderedControl(BaseModel):
    """Serialisable description of one interactive control."""

    key: str
    type: FieldType
    label: str = ""
    path: List[Any] = Field(default_factory=list, description="Address of the value inside content")
    value: Any = None
    disabled: bool = False
    required: bool = False
    busy: bool = False
    options: List[FieldOption] = Field(default_factory=list)
    children: List["RenderedControl"] = Field(default_factory=list)
    items: List[List["RenderedControl"]] = Field(default_factory=list, description="Repeater rows")
    can_add: bool = False
    can_remove: bool = False
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    extra: Dict[str, Any] = Field(default_factory=dict, description="Display metadata passed through")
