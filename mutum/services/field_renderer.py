"""
Field Renderer - turns a field schema plus the current answers into a
control description.

render() is pure: the same field, content and edit permission always
yield the same RenderedControl. Unknown or unset values render as empty
strings or empty collections. Read-only mode disables controls but keeps
them visible.
"""

import logging
import math
import re
import threading
from datetime import date
from typing import Any, Dict, List, Optional, Set, Tuple

from mutum.models.forms import (
    FieldSchema,
    FieldType,
    RenderedControl,
    SCALAR_TYPES,
)
from mutum.services.exceptions import ValidationError
from mutum.services.form_content import (
    FieldPath,
    get_value,
    group_value,
    item_bounds,
    repeater_items,
)

logger = logging.getLogger(__name__)

SLIDER_MIN = 0
SLIDER_MAX = 100
SLIDER_DEFAULT = 50

COLOR_PATTERN = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


class UploadTracker:
    """Per-field upload locks; one in-flight upload per resolved path."""

    def __init__(self):
        self._busy: Set[Tuple[Any, ...]] = set()
        self._lock = threading.Lock()

    def is_busy(self, path: FieldPath) -> bool:
        return tuple(path.parts) in self._busy

    def begin(self, path: FieldPath):
        key = tuple(path.parts)
        with self._lock:
            if key in self._busy:
                raise ValidationError(f"An upload for '{path}' is already in progress")
            self._busy.add(key)

    def finish(self, path: FieldPath):
        with self._lock:
            self._busy.discard(tuple(path.parts))

    @property
    def active(self) -> int:
        return len(self._busy)


def render(
    field: FieldSchema,
    content: Optional[Dict[str, Any]],
    editable: bool,
    parent: Optional[str] = None,
    index: Optional[int] = None,
    uploads: Optional[UploadTracker] = None,
) -> RenderedControl:
    """
    Describe the control for one field.

    Args:
        field: Field schema
        content: Whole answer document
        editable: False renders every control disabled (read-only review)
        parent: Key of the enclosing group/repeater, if any
        index: Repeater item index, if inside a repeater
        uploads: Tracker used to flag in-flight file uploads

    Returns:
        RenderedControl, with nested controls for group/repeater fields
    """
    if field.is_container and parent is not None:
        raise ValueError(f"Container '{field.key}' cannot be nested inside '{parent}'")

    path = FieldPath(field.key, parent=parent, index=index)
    control = RenderedControl(
        key=field.key,
        type=field.type,
        label=field.label,
        path=path.parts,
        disabled=not editable,
        required=field.required,
        options=list(field.options),
        extra=_display_metadata(field),
    )

    if field.type == FieldType.SECTION_TITLE:
        control.path = []
        return control

    if field.type == FieldType.GROUP:
        control.value = group_value(content, field)
        control.children = [
            render(child, content, editable, parent=field.key, uploads=uploads)
            for child in field.fields
        ]
        return control

    if field.type == FieldType.REPEATER:
        items = repeater_items(content, field)
        minimum, maximum = item_bounds(field)
        control.value = items
        control.items = [
            [
                render(child, _with_items(content, field.key, items), editable,
                       parent=field.key, index=i, uploads=uploads)
                for child in field.fields
            ]
            for i in range(len(items))
        ]
        control.can_add = editable and len(items) < maximum
        control.can_remove = editable and len(items) > max(1, minimum)
        control.min_value, control.max_value = minimum, maximum
        return control

    raw = get_value(content, path)
    control.value = display_value(field, raw)

    if field.type == FieldType.SLIDER_RANGE:
        control.min_value, control.max_value = SLIDER_MIN, SLIDER_MAX
    elif field.type == FieldType.FILE_UPLOAD:
        control.busy = uploads is not None and uploads.is_busy(path)
        control.disabled = control.disabled or control.busy

    return control


def render_section(
    fields: List[FieldSchema],
    content: Optional[Dict[str, Any]],
    editable: bool,
    uploads: Optional[UploadTracker] = None,
) -> List[RenderedControl]:
    return [render(field, content, editable, uploads=uploads) for field in fields]


def display_value(field: FieldSchema, raw: Any) -> Any:
    """Normalise a stored value for display without failing on bad data"""
    if field.type == FieldType.CHECKBOX_GROUP:
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, str)]

    if field.type == FieldType.SLIDER_RANGE:
        if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw):
            return SLIDER_DEFAULT
        return max(SLIDER_MIN, min(SLIDER_MAX, int(raw)))

    if field.type == FieldType.SELECT:
        values = [option.value for option in field.options]
        return raw if raw in values else ""

    if field.type == FieldType.RADIO:
        return raw if raw in field.option_labels() else ""

    if field.type == FieldType.COLOR_PICKER:
        return raw if isinstance(raw, str) and COLOR_PATTERN.match(raw) else ""

    if raw is None or isinstance(raw, (dict, list)):
        return ""
    if isinstance(raw, float) and not math.isfinite(raw):
        return ""
    return raw


def coerce_value(field: FieldSchema, value: Any) -> Any:
    """
    Validate a value written through a control.

    Returns:
        The value to store

    Raises:
        ValidationError: If the value does not fit the field type
    """
    kind = field.type
    label = field.label or field.key

    if kind == FieldType.SECTION_TITLE:
        raise ValidationError(f"'{field.key}' is display-only and holds no value")

    if value is None:
        return [] if kind == FieldType.CHECKBOX_GROUP else ""

    if kind == FieldType.NUMBER:
        return _coerce_number(value, label)

    if kind == FieldType.DATE:
        if value == "":
            return ""
        try:
            return date.fromisoformat(str(value)).isoformat()
        except ValueError:
            raise ValidationError(f"'{label}' expects a date (YYYY-MM-DD)")

    if kind == FieldType.COLOR_PICKER:
        if value != "" and not (isinstance(value, str) and COLOR_PATTERN.match(value)):
            raise ValidationError(f"'{label}' expects a color code like #1a2b3c")
        return value

    if kind in SCALAR_TYPES or kind == FieldType.FILE_UPLOAD:
        if isinstance(value, (dict, list)):
            raise ValidationError(f"'{label}' expects a single value")
        return str(value)

    if kind == FieldType.SELECT:
        if value != "" and value not in [option.value for option in field.options]:
            raise ValidationError(f"'{value}' is not an option of '{label}'")
        return value

    if kind == FieldType.RADIO:
        if value != "" and value not in field.option_labels():
            raise ValidationError(f"'{value}' is not an option of '{label}'")
        return value

    if kind == FieldType.CHECKBOX_GROUP:
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise ValidationError(f"'{label}' expects a list of labels")
        allowed = field.option_labels()
        custom = bool((field.model_extra or {}).get("allow_custom"))
        selected: List[str] = []
        for item in value:
            if item not in allowed and not custom:
                raise ValidationError(f"'{item}' is not an option of '{label}'")
            if item not in selected:
                selected.append(item)
        return selected

    if kind == FieldType.SLIDER_RANGE:
        number = _coerce_number(value, label)
        if number == "" or int(number) != number:
            raise ValidationError(f"'{label}' expects a whole number")
        return max(SLIDER_MIN, min(SLIDER_MAX, int(number)))

    if kind == FieldType.GROUP:
        if not isinstance(value, dict):
            raise ValidationError(f"'{label}' expects an object")
        return coerce_children(field, value)

    if kind == FieldType.REPEATER:
        if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
            raise ValidationError(f"'{label}' expects a list of objects")
        _, maximum = item_bounds(field)
        if len(value) > maximum:
            raise ValidationError(f"'{label}' accepts at most {maximum} items")
        return [coerce_children(field, item) for item in value]

    raise ValidationError(f"Unsupported field type {kind}")


def coerce_children(field: FieldSchema, value: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce the nested fields of a group value or repeater item; unknown keys are kept"""
    coerced = dict(value)
    for child in field.fields:
        if child.carries_value and child.key in coerced:
            coerced[child.key] = coerce_value(child, coerced[child.key])
    return coerced


def toggle_choice(current: Any, label: str) -> List[str]:
    """Checkbox toggle: append an unselected label, drop a selected one"""
    selected = [item for item in current if isinstance(item, str)] if isinstance(current, list) else []
    if label in selected:
        return [item for item in selected if item != label]
    return selected + [label]


def _coerce_number(value: Any, label: str):
    if value == "":
        return ""
    if isinstance(value, bool):
        raise ValidationError(f"'{label}' expects a number")
    if isinstance(value, (int, float)):
        number = value
    else:
        try:
            number = float(str(value).replace(",", "."))
        except ValueError:
            raise ValidationError(f"'{label}' expects a number")
    if not math.isfinite(number):
        raise ValidationError(f"'{label}' expects a finite number")
    if isinstance(number, int):
        return number
    return int(number) if number.is_integer() else number


def _with_items(content: Optional[Dict[str, Any]], key: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
    # Rows synthesized for display are readable through the normal path lookup
    view = dict(content) if isinstance(content, dict) else {}
    view[key] = items
    return view


def _display_metadata(field: FieldSchema) -> Dict[str, Any]:
    extra = {
        "placeholder": field.placeholder,
        "description": field.description,
        "display_target": field.display_target,
    }
    extra.update(field.model_extra or {})
    return {name: value for name, value in extra.items() if value is not None}
