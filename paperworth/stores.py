# paperworth/stores.py
"""
State containers behind the home screen and the recommendation panel.

They keep the last data fetched from the services so the Streamlit views can
re-render from them on every rerun without refetching.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from .api import ApiError
from .categories import infer_category, resolve_category, top_categories
from .models import Promotion
from .notifications import NotificationTimer
from .promotions import group_by_category, normalize_promotions
from .receipts import OcrError, build_receipt_payload, is_complete_extraction
from .utils import to_float

logger = logging.getLogger("paperworth.stores")

SAVED_PROMOTIONS_LIMIT = 3
TOP_CATEGORY_COUNT = 3


def fetch_category_promotions(promotion_service, categories: List[str]) -> List[Dict[str, Any]]:
    """Promotions for each category, fetched concurrently; a failed category yields no deals."""
    if not categories:
        return []

    def load(category):
        try:
            return normalize_promotions(promotion_service.get_promotions_by_category(category))
        except ApiError as e:
            logger.warning(f"No promotions loaded for {category}: {e}")
            return []

    with ThreadPoolExecutor(max_workers=len(categories)) as pool:
        results = list(pool.map(load, categories))
    return [{"name": name, "deals": deals} for name, deals in zip(categories, results)]


def merge_recommendation(groups: List[Dict[str, Any]], group: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Fold one category group into the recommendations.

    Deals join an existing group with the same name (case-insensitive) unless already present;
    an unknown category is put first.
    """
    for existing in groups:
        if existing["name"].lower() == group["name"].lower():
            seen = {deal.key for deal in existing["deals"]}
            for deal in group["deals"]:
                if deal.key not in seen:
                    existing["deals"].append(deal)
                    seen.add(deal.key)
            return groups
    return [group] + groups


class RecommendedPromotionsStore:
    def __init__(self, promotion_service):
        self.promotion_service = promotion_service
        self.recommended_promotions: List[Dict[str, Any]] = []
        self.top_categories: List[str] = []
        self.is_loading = False
        self.error: Optional[str] = None

    @property
    def has_recommendations(self) -> bool:
        return any(group["deals"] for group in self.recommended_promotions)

    def analyze_receipt_history(self, receipts) -> List[str]:
        self.is_loading = True
        self.error = None
        names = [r.category or r.additional_fields.get("category") or r.merchant_name or "Others"
                 for r in receipts]
        self.top_categories = top_categories(names, TOP_CATEGORY_COUNT)
        if self.top_categories:
            self.load_recommended_promotions(self.top_categories)
        else:
            self.is_loading = False
        return self.top_categories

    def load_recommended_promotions(self, categories: List[str]):
        self.is_loading = True
        try:
            self.recommended_promotions = fetch_category_promotions(self.promotion_service, categories)
        except Exception as e:
            logger.error(f"Failed to load promotions: {e}")
            self.error = str(e) or "Failed to load promotions"
        finally:
            self.is_loading = False
        return self.recommended_promotions

    def clear(self):
        self.recommended_promotions = []
        self.top_categories = []


class HomeStore:
    """Home screen: scan, save, recommendations and saved promotions."""

    def __init__(self, auth, budget_service, receipt_service, promotion_service,
                 saved_promotions_service, scanner, notification: NotificationTimer = None):
        self.auth = auth
        self.budget_service = budget_service
        self.receipt_service = receipt_service
        self.promotion_service = promotion_service
        self.saved_promotions_service = saved_promotions_service
        self.scanner = scanner
        self.notification = notification or NotificationTimer()

        self.user_name = "User"
        self.monthly_expenses = 0.0
        self.user_receipt_history = []
        self.recommended_promotions: List[Dict[str, Any]] = []
        self.saved_promotions: List[Promotion] = []
        self.show_more_saved_promotions = False
        self.saved_promotions_limit = SAVED_PROMOTIONS_LIMIT
        self.recently_saved_receipt: Optional[Dict[str, Any]] = None
        self.selected_promotion: Optional[Promotion] = None
        self.is_processing = False
        self.processing_message = ""
        self.is_loading_budget = False
        self.is_loading_recommendations = False
        self.is_loading_saved_promotions = False
        self.is_loading_promotions = False

    # ---- derived ----
    @property
    def user(self):
        return self.auth.get_current_user()

    @property
    def first_name(self) -> str:
        return (self.user_name or "User").split(" ")[0]

    @property
    def displayed_saved_promotions(self) -> List[Promotion]:
        if self.show_more_saved_promotions:
            return self.saved_promotions
        return self.saved_promotions[:self.saved_promotions_limit]

    def toggle_show_more_saved_promotions(self):
        self.show_more_saved_promotions = not self.show_more_saved_promotions

    # ---- loading ----
    def load_user_data(self):
        user = self.user
        if user is None:
            return
        if user.name:
            self.user_name = user.name
        self.is_loading_budget = True
        try:
            budget = self.budget_service.load_user_budget(user.id)
            self.monthly_expenses = budget.total_spent or 0
        finally:
            self.is_loading_budget = False

    def load_receipt_history(self):
        user = self.user
        if user is None:
            self.recommended_promotions = []
            return
        self.is_loading_recommendations = True
        try:
            self.user_receipt_history = self.receipt_service.get_user_receipts(user.id)
        except ApiError as e:
            logger.error(f"Error loading receipt history: {e}")
            self.recommended_promotions = []
            self.is_loading_recommendations = False
            return
        categories = top_categories(
            [resolve_category(r.category, r.additional_fields, r.merchant_name) for r in self.user_receipt_history],
            TOP_CATEGORY_COUNT,
        )
        groups = fetch_category_promotions(self.promotion_service, categories)
        self.recommended_promotions = [g for g in groups if g["deals"]]
        self.is_loading_recommendations = False

    def load_saved_promotions(self):
        user = self.user
        if user is None:
            self.saved_promotions = []
            return
        self.is_loading_saved_promotions = True
        try:
            self.saved_promotions = self.saved_promotions_service.get_saved_promotions(user.id)
        finally:
            self.is_loading_saved_promotions = False

    # ---- scanning ----
    def process_ocr(self, filename: str, data: bytes) -> bool:
        """Validate and scan a receipt image. FileValidationError propagates to the caller."""
        self.scanner.select_file(filename, data)
        self.is_processing = True
        try:
            self.scanner.scan()
            return True
        except OcrError as e:
            logger.warning(f"OCR did not produce a receipt: {e}")
            return False
        finally:
            self.is_processing = False

    def reset_scanner(self):
        self.scanner.reset()
        self.recently_saved_receipt = None

    def add_to_recommended(self, group: Dict[str, Any]):
        self.recommended_promotions = merge_recommendation(self.recommended_promotions, group)

    def save_receipt(self) -> Dict[str, Any]:
        """Save the scanned receipt, then pull promotions that match it.

        Raises ValueError when the extraction is incomplete and ApiError when the save fails.
        """
        extracted = self.scanner.extracted_data
        if not is_complete_extraction(extracted):
            raise ValueError("Incomplete receipt data. Please try again.")
        user = self.user
        self.is_processing = True
        self.processing_message = "Saving your receipt..."

        category = extracted.get("category") or infer_category(extracted.get("merchantName"))
        payload = build_receipt_payload(user.id if user else None, extracted, category,
                                        self.scanner.image_preview, self.scanner.ocr_text)
        try:
            receipt, points = self.receipt_service.save_receipt(payload)
        except ApiError:
            self.is_processing = False
            self.processing_message = ""
            raise

        self.recently_saved_receipt = {**payload, "id": receipt.id}
        self.monthly_expenses += to_float(extracted.get("totalAmount"))
        self.notification.show(f"Receipt saved! You earned {points} points.")

        # history reload rebuilds the recommendations, so merge the receipt's matches after it
        self.load_receipt_history()

        self.processing_message = "Finding matching promotions..."
        self.is_loading_promotions = True
        promotions = normalize_promotions(self.promotion_service.find_promotions_for_receipt(
            extracted.get("merchantName"), category, receipt.id))
        for group in group_by_category(promotions):
            self.add_to_recommended(group)
        self.is_loading_promotions = False

        saved = self.recently_saved_receipt
        self.scanner.reset()
        self.is_processing = False
        self.processing_message = ""
        return saved

    # ---- saved promotions ----
    def view_promotion(self, promotion: Optional[Promotion]):
        self.selected_promotion = promotion

    def save_promotion(self, promotion: Promotion):
        user = self.user
        if user is None:
            return
        if any(p.key == promotion.key for p in self.saved_promotions):
            raise ValueError("This promotion is already saved!")
        self.saved_promotions_service.save_promotion(user.id, promotion.key)
        self.saved_promotions = self.saved_promotions_service.saved_promotions
        self.notification.show("Promotion saved successfully!")
        self.selected_promotion = None

    def remove_promotion(self, promotion_id):
        user = self.user
        if user is None:
            return
        self.saved_promotions_service.remove_promotion(user.id, promotion_id)
        self.saved_promotions = self.saved_promotions_service.saved_promotions
        self.notification.show("Promotion removed!")
