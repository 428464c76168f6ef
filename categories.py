"""Built-in and user-defined expense categories.

Custom categories are plain dicts (``{"id", "name", "icon", "color"}``) as
stored in ``users/{uid}/settings/categories``. Every function here works on
an in-memory list and returns a new one; persistence lives in
``services.CategoryService``.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from errors import ValidationError

logger = logging.getLogger(__name__)

CUSTOM_PREFIX = "custom_"
CUSTOM_NAME_MAX_LENGTH = 15
DEFAULT_CUSTOM_ICON = "✈️"
FALLBACK_CATEGORY_ID = "others"

AVAILABLE_ICONS = (
    "🍔", "🚗", "🎮", "🛍️", "🏥", "📄", "📚", "💰",
    "✈️", "🏠", "💼", "🎬", "🎵", "⚽", "📱", "💻",
    "🎨", "🍕", "☕", "🎓", "🏋️", "🎯", "📷", "🎁",
)

CUSTOM_PALETTE = (
    "#FF6B9D",
    "#00D9FF",
    "#C77DFF",
    "#A8E6CF",
    "#FFB347",
    "#77DD77",
    "#84B6F4",
    "#FDFD96",
    "#FF6961",
    "#CB99C9",
)


@dataclass(frozen=True)
class CategoryView:
    id: str
    name: str
    icon: str
    color: str
    is_custom: bool = False


BUILTIN_CATEGORIES: tuple[CategoryView, ...] = (
    CategoryView("food", "Alimentación", "🍔", "#FF6B6B"),
    CategoryView("transport", "Transporte", "🚗", "#4ECDC4"),
    CategoryView("entertainment", "Entretenimiento", "🎮", "#FFE66D"),
    CategoryView("shopping", "Compras", "🛍️", "#95E1D3"),
    CategoryView("health", "Salud", "🏥", "#F38181"),
    CategoryView("bills", "Facturas", "📄", "#AA96DA"),
    CategoryView("education", "Educación", "📚", "#FCBAD3"),
    CategoryView(FALLBACK_CATEGORY_ID, "Otros", "💰", "#A8D8EA"),
)

_BUILTIN_BY_ID = {cat.id: cat for cat in BUILTIN_CATEGORIES}
FALLBACK_CATEGORY = _BUILTIN_BY_ID[FALLBACK_CATEGORY_ID]


def is_custom_id(category_id: object) -> bool:
    return isinstance(category_id, str) and category_id.startswith(CUSTOM_PREFIX)


def _custom_view(entry: dict) -> CategoryView:
    return CategoryView(
        id=str(entry.get("id")),
        name=str(entry.get("name") or FALLBACK_CATEGORY.name),
        icon=str(entry.get("icon") or DEFAULT_CUSTOM_ICON),
        color=str(entry.get("color") or FALLBACK_CATEGORY.color),
        is_custom=True,
    )


def resolve(category_id: object, custom_list: Optional[Sequence[dict]] = None) -> CategoryView:
    for entry in custom_list or ():
        if isinstance(entry, dict) and entry.get("id") == category_id:
            return _custom_view(entry)
    if isinstance(category_id, str) and category_id in _BUILTIN_BY_ID:
        return _BUILTIN_BY_ID[category_id]
    return FALLBACK_CATEGORY


def merged(custom_list: Optional[Sequence[dict]] = None) -> list[CategoryView]:
    customs = [
        _custom_view(entry)
        for entry in custom_list or ()
        if isinstance(entry, dict) and entry.get("id")
    ]
    return [*BUILTIN_CATEGORIES, *customs]


def _new_custom_id(existing: set) -> str:
    stamp = int(time.time() * 1000)
    while f"{CUSTOM_PREFIX}{stamp}" in existing:
        stamp += 1
    return f"{CUSTOM_PREFIX}{stamp}"


def add_custom(
    name: str,
    icon: Optional[str],
    custom_list: Optional[Sequence[dict]] = None,
    *,
    rng: Optional[random.Random] = None,
) -> tuple[dict, list[dict]]:
    clean_name = (name or "").strip()
    if not clean_name:
        raise ValidationError("Category name cannot be empty")
    if len(clean_name) > CUSTOM_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Category name must be at most {CUSTOM_NAME_MAX_LENGTH} characters"
        )

    current = list(custom_list or [])
    existing_ids = {entry.get("id") for entry in current if isinstance(entry, dict)}
    category = {
        "id": _new_custom_id(existing_ids),
        "name": clean_name,
        "icon": (icon or "").strip() or DEFAULT_CUSTOM_ICON,
        "color": (rng or random).choice(CUSTOM_PALETTE),
    }
    logger.info(f"category_add: id={category['id']} name={clean_name}")
    return category, [*current, category]


def remove_custom(category_id: str, custom_list: Optional[Sequence[dict]] = None) -> list[dict]:
    return [
        entry
        for entry in custom_list or ()
        if not (isinstance(entry, dict) and entry.get("id") == category_id)
    ]
