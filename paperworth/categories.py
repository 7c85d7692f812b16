# paperworth/categories.py
"""
Shared category lookup: merchant keyword inference, colours and icons.

Every screen (home, past receipts, promotions, expense tracker) resolves
categories through this module.
"""
import re
from typing import Dict, Iterable, List, Optional

DEFAULT_CATEGORY = "Others"
UNCATEGORIZED = "Uncategorized"

# ordered: first group with a matching keyword wins
CATEGORY_KEYWORDS = [
    ("Groceries", ["cold storage", "fairprice", "ntuc", "giant", "sheng siong"]),
    ("Fast Food", ["mcdonald", "burger king", "kfc", "subway", "jollibee"]),
    ("Cafes", ["starbucks", "coffee bean", "toast box", "ya kun", "cafe"]),
    ("Retail", ["uniqlo", "zara", "h&m", "cotton on"]),
    ("Health & Beauty", ["guardian", "watsons", "unity", "pharmacy"]),
]

HEALTH_PROMOTION_KEYWORDS = ["health", "pharmacy", "guardian", "watson", "unity"]

# percent of the monthly total used when the backend cannot supply a budget
DEFAULT_CATEGORY_SHARES = {
    "Groceries": 30,
    "Dining": 20,
    "Fast Food": 10,
    "Cafes": 5,
    "Retail": 15,
    "Shopping": 10,
    "Healthcare": 5,
    "Others": 5,
}

# (substring, value) pairs, checked in order against the lower-cased name
_COLORS = [
    ("grocer", "#4CAF50"),
    ("dining", "#FF9800"),
    ("fast food", "#F44336"),
    ("cafe", "#795548"),
    ("shopping", "#2196F3"),
    ("retail", "#3F51B5"),
    ("health", "#00BCD4"),
    ("pharmacy", "#00BCD4"),
    ("transport", "#9C27B0"),
    ("entertainment", "#E91E63"),
]
DEFAULT_COLOR = "#607D8B"

_ICONS = [
    ("grocer", "🛒"),
    ("dining", "🍔"),
    ("fast food", "🍟"),
    ("cafe", "☕"),
    ("retail", "👕"),
    ("health", "💊"),
    ("pharmacy", "💊"),
]
DEFAULT_ICON = "💰"

PROMOTION_CATEGORIES = [
    {"id": "all", "name": "All"},
    {"id": "fastfood", "name": "Fast Food"},
    {"id": "groceries", "name": "Groceries"},
    {"id": "retail", "name": "Retail"},
    {"id": "cafes", "name": "Cafes"},
    {"id": "dining", "name": "Dining"},
    {"id": "health&beauty", "name": "Health & Beauty"},
]

HEALTH_FILTER_ALIASES = {"health&beauty", "healthandbeauty", "health", "beauty"}


def infer_category(merchant_name: Optional[str]) -> str:
    name = (merchant_name or "").lower()
    if not name:
        return DEFAULT_CATEGORY
    for category, keywords in CATEGORY_KEYWORDS:
        if any(k in name for k in keywords):
            return category
    return DEFAULT_CATEGORY


def resolve_category(category=None, additional_fields=None, merchant_name=None) -> str:
    """Explicit category first, then the OCR extra fields, then merchant inference."""
    if category:
        return category
    extra = (additional_fields or {}).get("category")
    if extra:
        return extra
    return infer_category(merchant_name)


def infer_promotion_category(merchant: Optional[str], description: Optional[str]) -> str:
    text = f"{merchant or ''} {description or ''}".lower()
    if any(k in text for k in HEALTH_PROMOTION_KEYWORDS):
        return "Health & Beauty"
    return UNCATEGORIZED


def category_id(name: Optional[str]) -> str:
    return re.sub(r"\s+", "", (name or "").lower())


def matches_category_filter(category: Optional[str], selected_id: str,
                            options: Iterable[Dict[str, str]] = PROMOTION_CATEGORIES) -> bool:
    if not selected_id or selected_id == "all":
        return True
    if not category:
        return False
    cat_id = category_id(category)
    if cat_id == selected_id.lower():
        return True
    if selected_id == "health&beauty" and cat_id in HEALTH_FILTER_ALIASES:
        return True
    for option in options:
        if option["id"] == selected_id and category_id(option["name"]) == cat_id:
            return True
    return False


def _lookup(table, name, default):
    lowered = (name or "").lower()
    for needle, value in table:
        if needle in lowered:
            return value
    return default


def category_color(name: Optional[str]) -> str:
    return _lookup(_COLORS, name, DEFAULT_COLOR)


def category_icon(name: Optional[str]) -> str:
    return _lookup(_ICONS, name, DEFAULT_ICON)


def top_categories(names: Iterable[str], limit: int = 3) -> List[str]:
    """Most frequent category names, ties keep first-seen order."""
    counts: Dict[str, int] = {}
    for name in names:
        counts[name] = counts.get(name, 0) + 1
    return [name for name, _ in sorted(counts.items(), key=lambda kv: -kv[1])[:limit]]
