"""
Path-based access to form content.

Answers live in one free-form JSON document. A value is addressed at one
of three levels:

    root field          content[key]
    group member        content[parent][key]
    repeater item field content[parent][index][key]

All writers are copy-on-write: they return a new document and leave the
caller's document (and every sibling branch) untouched.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from mutum.models.forms import FieldSchema, FieldType
from mutum.services.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MIN_ITEMS = 1
DEFAULT_MAX_ITEMS = 5


@dataclass(frozen=True)
class FieldPath:
    """Address of a value inside the content document."""

    key: str
    parent: Optional[str] = None
    index: Optional[int] = None

    def __post_init__(self):
        if self.index is not None and self.parent is None:
            raise ValueError("A repeater index needs a parent key")
        if self.index is not None and self.index < 0:
            raise ValueError("Repeater index must be >= 0")

    @property
    def parts(self) -> List[Any]:
        if self.parent is None:
            return [self.key]
        if self.index is None:
            return [self.parent, self.key]
        return [self.parent, self.index, self.key]

    def __str__(self) -> str:
        return ".".join(str(part) for part in self.parts)


def get_value(content: Optional[Dict[str, Any]], path: FieldPath, default: Any = None) -> Any:
    """Read a value; any missing or mis-shaped level yields the default"""
    if not isinstance(content, dict):
        return default

    if path.parent is None:
        return content.get(path.key, default)

    container = content.get(path.parent)
    if path.index is None:
        if not isinstance(container, dict):
            return default
        return container.get(path.key, default)

    if not isinstance(container, list) or path.index >= len(container):
        return default
    item = container[path.index]
    if not isinstance(item, dict):
        return default
    return item.get(path.key, default)


def set_value(content: Optional[Dict[str, Any]], path: FieldPath, value: Any) -> Dict[str, Any]:
    """Return a copy of content with the value written at path"""
    updated = copy.deepcopy(content) if isinstance(content, dict) else {}

    if path.parent is None:
        updated[path.key] = value
        return updated

    if path.index is None:
        group = updated.get(path.parent)
        if not isinstance(group, dict):
            group = {}
        group[path.key] = value
        updated[path.parent] = group
        return updated

    items = updated.get(path.parent)
    if not isinstance(items, list):
        items = []
    while len(items) <= path.index:
        items.append({})
    item = items[path.index]
    if not isinstance(item, dict):
        item = {}
    item[path.key] = value
    items[path.index] = item
    updated[path.parent] = items
    return updated


def item_bounds(field: FieldSchema) -> tuple:
    """(min_items, max_items) of a repeater with defaults applied"""
    minimum = DEFAULT_MIN_ITEMS if field.min_items is None else field.min_items
    maximum = DEFAULT_MAX_ITEMS if field.max_items is None else field.max_items
    return minimum, maximum


def repeater_items(content: Optional[Dict[str, Any]], field: FieldSchema) -> List[Dict[str, Any]]:
    """
    Items of a repeater as rendered.

    At least one item (and never fewer than min_items) is materialized,
    padding with empty items when the document holds fewer.
    """
    _require_type(field, FieldType.REPEATER)
    stored = content.get(field.key) if isinstance(content, dict) else None
    items = [item if isinstance(item, dict) else {} for item in stored] if isinstance(stored, list) else []

    minimum, _ = item_bounds(field)
    while len(items) < max(1, minimum):
        items.append({})
    return items


def group_value(content: Optional[Dict[str, Any]], field: FieldSchema) -> Dict[str, Any]:
    _require_type(field, FieldType.GROUP)
    stored = content.get(field.key) if isinstance(content, dict) else None
    return stored if isinstance(stored, dict) else {}


def add_item(content: Optional[Dict[str, Any]], field: FieldSchema) -> Dict[str, Any]:
    """Append an empty repeater item; rejected at max_items"""
    items = copy.deepcopy(repeater_items(content, field))
    _, maximum = item_bounds(field)
    if len(items) >= maximum:
        raise ValidationError(f"'{field.label or field.key}' accepts at most {maximum} items")

    items.append({})
    updated = copy.deepcopy(content) if isinstance(content, dict) else {}
    updated[field.key] = items
    return updated


def remove_item(content: Optional[Dict[str, Any]], field: FieldSchema, index: int) -> Dict[str, Any]:
    """Remove one repeater item; rejected at min_items"""
    items = copy.deepcopy(repeater_items(content, field))
    minimum, _ = item_bounds(field)
    if index < 0 or index >= len(items):
        raise ValidationError(f"'{field.key}' has no item {index}")
    if len(items) <= max(1, minimum):
        raise ValidationError(f"'{field.label or field.key}' needs at least {max(1, minimum)} items")

    del items[index]
    updated = copy.deepcopy(content) if isinstance(content, dict) else {}
    updated[field.key] = items
    return updated


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _require_type(field: FieldSchema, expected: FieldType):
    if field.type != expected:
        raise ValueError(f"Field '{field.key}' is {field.type.value}, not {expected.value}")
