# paperworth/promotions.py
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import config
from .api import ApiError
from .categories import UNCATEGORIZED, PROMOTION_CATEGORIES, category_id, infer_promotion_category, \
    matches_category_filter
from .models import Promotion, SavedPromotion
from .utils import parse_datetime, utcnow

logger = logging.getLogger("paperworth.promotions")

EXPIRING_SOON_DAYS = 7
MAX_STATUS_WORKERS = 8


def _to_promotions(data) -> List[Promotion]:
    return [Promotion.from_dict(p) for p in (data or [])]


# ---------------- Shaping helpers ----------------
def fix_image_url(url: Optional[str], base_url: str = None) -> str:
    if not url:
        return config.PLACEHOLDER_IMAGE
    if url.startswith("http://") or url.startswith("https://"):
        return url
    base = (base_url or config.IMAGE_BASE_URL).rstrip("/")
    return f"{base}/{url.lstrip('/')}"


def normalize_promotions(promotions: List[Promotion], base_url: str = None) -> List[Promotion]:
    """Absolute image URLs, and a category for promotions the backend left blank."""
    for promo in promotions:
        promo.image_url = fix_image_url(promo.image_url, base_url)
        if not promo.category:
            promo.category = infer_promotion_category(promo.merchant, promo.description)
    return promotions


def group_by_category(promotions: List[Promotion]) -> List[Dict[str, Any]]:
    groups: Dict[str, List[Promotion]] = {}
    for promo in promotions:
        groups.setdefault(promo.category or UNCATEGORIZED, []).append(promo)
    return [{"name": name, "deals": deals} for name, deals in groups.items()]


def filter_by_category(promotions: List[Promotion], selected_id: str) -> List[Promotion]:
    return [p for p in promotions if matches_category_filter(p.category, selected_id)]


def default_category_id(category: Optional[str]) -> str:
    """Tab to open for a category name, 'all' when it is not one of the known tabs."""
    wanted = category_id(category)
    for option in PROMOTION_CATEGORIES:
        if option["id"] == wanted or category_id(option["name"]) == wanted:
            return option["id"]
    return "all"


def is_expiring_soon(expiry, now: datetime = None) -> bool:
    expiry_date = parse_datetime(expiry)
    if expiry_date is None:
        return False
    days = (expiry_date - (now or utcnow())).total_seconds() // 86400
    return 0 <= days <= EXPIRING_SOON_DAYS


def has_expired(expiry, now: datetime = None) -> bool:
    expiry_date = parse_datetime(expiry)
    if expiry_date is None:
        return False
    return expiry_date < (now or utcnow())


def time_elapsed(saved_at, now: datetime = None) -> str:
    saved = parse_datetime(saved_at)
    if saved is None:
        return ""
    seconds = int(((now or utcnow()) - saved).total_seconds())
    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return f"{seconds // 60} minute(s) ago"
    if seconds < 86400:
        return f"{seconds // 3600} hour(s) ago"
    return f"{seconds // 86400} day(s) ago"


def format_date(value) -> str:
    if not value:
        return "No expiry date"
    parsed = parse_datetime(value)
    if parsed is None:
        return "Invalid date"
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}"


# ---------------- Services ----------------
class PromotionService:
    def __init__(self, api):
        self.api = api

    def get_all_promotions(self) -> List[Promotion]:
        return _to_promotions(self.api.get("/promotions"))

    def get_promotions_by_category(self, category: str) -> List[Promotion]:
        return _to_promotions(self.api.get(f"/promotions/category/{category}"))

    def get_promotions_by_merchant(self, merchant: str) -> List[Promotion]:
        return _to_promotions(self.api.get(f"/promotions/merchant/{merchant}"))

    def search_promotions(self, query: str) -> List[Promotion]:
        return _to_promotions(self.api.get("/promotions/search", params={"query": query}))

    def get_active_promotions(self) -> List[Promotion]:
        return _to_promotions(self.api.get("/promotions/active"))

    def match_promotions(self, merchant: str = None, category: str = None) -> List[Promotion]:
        params = {k: v for k, v in (("merchant", merchant), ("category", category)) if v}
        return _to_promotions(self.api.get("/promotions/match", params=params))

    def get_promotions_by_receipt(self, receipt_id) -> List[Promotion]:
        return _to_promotions(self.api.get(f"/promotions/receipt/{receipt_id}"))

    def get_promotion(self, promotion_id) -> Promotion:
        return Promotion.from_dict(self.api.get(f"/promotions/{promotion_id}") or {})

    def find_promotions_for_receipt(self, merchant: str, category: str, receipt_id=None) -> List[Promotion]:
        """Merchant/category match first, then whatever the backend linked to the receipt."""
        try:
            matched = self.match_promotions(merchant, category)
            if matched:
                return matched
        except ApiError as e:
            logger.warning(f"Promotion match failed for {merchant}: {e}")
        if receipt_id is None:
            return []
        try:
            return self.get_promotions_by_receipt(receipt_id)
        except ApiError as e:
            logger.error(f"Error fetching promotions for receipt {receipt_id}: {e}")
            return []

    def load_for_receipt_or_all(self, receipt_id) -> List[Promotion]:
        """Promotions page opened from a receipt: its promotions, or every promotion when it has none."""
        try:
            promos = self.get_promotions_by_receipt(receipt_id)
        except ApiError as e:
            logger.error(f"Error fetching promotions for receipt {receipt_id}: {e}")
            promos = []
        return normalize_promotions(promos or self.get_all_promotions())


class SavedPromotionsService:
    """Saved promotions for one user, with the last fetched list cached."""

    def __init__(self, api):
        self.api = api
        self.saved_promotions: List[Promotion] = []
        self.loading = False
        self.initial_load_done = False

    def _base(self, user_id) -> str:
        return f"/promotions/saved/{user_id}"

    def get_saved_promotions(self, user_id) -> List[Promotion]:
        self.loading = True
        try:
            self.saved_promotions = normalize_promotions(_to_promotions(self.api.get(self._base(user_id))))
        except ApiError as e:
            logger.error(f"Error loading saved promotions: {e}")
            if not self.initial_load_done:
                self.saved_promotions = []
        finally:
            self.loading = False
            self.initial_load_done = True
        return self.saved_promotions

    def get_saved_promotions_by_category(self, user_id, category: str) -> List[Promotion]:
        try:
            return _to_promotions(self.api.get(f"{self._base(user_id)}/category/{category}"))
        except ApiError as e:
            logger.error(f"Error loading saved {category} promotions: {e}")
            return []

    def is_promotion_saved(self, user_id, promotion_id) -> Dict[str, bool]:
        try:
            result = self.api.get(f"{self._base(user_id)}/{promotion_id}") or {}
            return {"saved": bool(result.get("saved"))}
        except ApiError as e:
            logger.error(f"Error checking saved state of {promotion_id}: {e}")
            return {"saved": False}

    def saved_status(self, user_id, promotion_ids: List[Any]) -> Dict[Any, bool]:
        """Saved flag per promotion id, checked concurrently."""
        ids = list(dict.fromkeys(promotion_ids))
        if not ids:
            return {}
        with ThreadPoolExecutor(max_workers=min(len(ids), MAX_STATUS_WORKERS)) as pool:
            results = list(pool.map(lambda pid: self.is_promotion_saved(user_id, pid)["saved"], ids))
        return dict(zip(ids, results))

    def save_promotion(self, user_id, promotion_id) -> SavedPromotion:
        saved = SavedPromotion.from_dict(self.api.post(f"{self._base(user_id)}/{promotion_id}") or {})
        logger.info(f"Promotion {promotion_id} saved for user {user_id}")
        self.refresh_saved_promotions(user_id)
        return saved

    def remove_promotion(self, user_id, promotion_id) -> Any:
        result = self.api.delete(f"{self._base(user_id)}/{promotion_id}")
        self.saved_promotions = [p for p in self.saved_promotions if str(p.key) != str(promotion_id)]
        logger.info(f"Promotion {promotion_id} removed for user {user_id}")
        return result

    def refresh_saved_promotions(self, user_id) -> List[Promotion]:
        return self.get_saved_promotions(user_id)

    def get_save_count(self, promotion_id) -> Dict[str, int]:
        try:
            result = self.api.get(f"/promotions/saved/count/{promotion_id}") or {}
            return {"count": int(result.get("count") or 0)}
        except ApiError as e:
            logger.error(f"Error fetching save count of {promotion_id}: {e}")
            return {"count": 0}
