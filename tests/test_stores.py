import pytest

from paperworth.api import ApiError
from paperworth.budget import BudgetService, current_month_year
from paperworth.models import Promotion, Receipt
from paperworth.notifications import NotificationTimer
from paperworth.promotions import PromotionService, SavedPromotionsService
from paperworth.receipts import OcrScanner, ReceiptService
from paperworth.stores import HomeStore, RecommendedPromotionsStore, fetch_category_promotions, \
    merge_recommendation

OCR_RESULT = {"merchantName": "KFC Bugis", "totalAmount": 12.3, "dateOfPurchase": "2025-03-02",
              "fullText": "KFC"}


def promo_json(id, category="Fast Food"):
    return {"id": id, "merchant": "KFC", "description": "deal", "category": category, "expiry": "2025-12-31"}


def deal(id):
    return Promotion.from_dict(promo_json(id))


@pytest.fixture
def home(fake_api, fake_auth):
    store = HomeStore(
        fake_auth,
        BudgetService(fake_api),
        ReceiptService(fake_api),
        PromotionService(fake_api),
        SavedPromotionsService(fake_api),
        OcrScanner(fake_api),
        NotificationTimer(),
    )
    yield store
    store.notification.close()


# ============================================================================
# RECOMMENDATION HELPERS
# ============================================================================

class TestMergeRecommendation:

    def test_merges_into_existing_group_without_duplicates(self):
        groups = [{"name": "Fast Food", "deals": [deal(1)]}]
        merged = merge_recommendation(groups, {"name": "fast food", "deals": [deal(1), deal(2)]})
        assert len(merged) == 1
        assert [d.id for d in merged[0]["deals"]] == [1, 2]

    def test_new_group_goes_first(self):
        groups = [{"name": "Retail", "deals": []}]
        merged = merge_recommendation(groups, {"name": "Cafes", "deals": [deal(3)]})
        assert [g["name"] for g in merged] == ["Cafes", "Retail"]


class TestFetchCategoryPromotions:

    def test_failed_category_yields_empty_deals(self, fake_api):
        fake_api.respond("GET", "/promotions/category/Groceries", [promo_json(1, "Groceries")])
        fake_api.respond("GET", "/promotions/category/Retail", ApiError(500))

        groups = fetch_category_promotions(PromotionService(fake_api), ["Groceries", "Retail"])

        assert [g["name"] for g in groups] == ["Groceries", "Retail"]
        assert [d.id for d in groups[0]["deals"]] == [1]
        assert groups[1]["deals"] == []

    def test_no_categories(self, fake_api):
        assert fetch_category_promotions(PromotionService(fake_api), []) == []
        assert fake_api.calls == []


class TestRecommendedPromotionsStore:

    def test_analyze_uses_top_categories(self, fake_api):
        fake_api.respond("GET", "/promotions/category/Cafes", [promo_json(1, "Cafes")])
        fake_api.respond("GET", "/promotions/category/Retail", [])
        receipts = [Receipt.from_dict({"category": "Cafes"}), Receipt.from_dict({"category": "Cafes"}),
                    Receipt.from_dict({"additionalFields": {"category": "Retail"}})]
        store = RecommendedPromotionsStore(PromotionService(fake_api))

        assert store.analyze_receipt_history(receipts) == ["Cafes", "Retail"]
        assert store.has_recommendations
        assert not store.is_loading

    def test_no_receipts(self, fake_api):
        store = RecommendedPromotionsStore(PromotionService(fake_api))
        assert store.analyze_receipt_history([]) == []
        assert not store.has_recommendations
        store.clear()
        assert store.recommended_promotions == []


# ============================================================================
# HOME STORE
# ============================================================================

class TestHomeStoreLoading:

    def test_load_user_data(self, home, fake_api):
        fake_api.respond("GET", f"/budgets/user/u1/month/{current_month_year()}",
                         {"userId": "u1", "monthYear": current_month_year(), "totalBudget": 1000, "totalSpent": 250})
        home.load_user_data()
        assert home.first_name == "Jane"
        assert home.monthly_expenses == 250

    def test_receipt_history_keeps_non_empty_groups(self, home, fake_api):
        fake_api.respond("GET", "/receipts/user/u1", [
            {"id": "r1", "merchantName": "KFC", "category": "Fast Food"},
            {"id": "r2", "merchantName": "Uniqlo"},
        ])
        fake_api.respond("GET", "/promotions/category/Fast Food", [promo_json(1)])
        fake_api.respond("GET", "/promotions/category/Retail", [])

        home.load_receipt_history()

        assert [g["name"] for g in home.recommended_promotions] == ["Fast Food"]

    def test_receipt_history_error_clears_recommendations(self, home, fake_api):
        home.recommended_promotions = [{"name": "Old", "deals": [deal(1)]}]
        fake_api.respond("GET", "/receipts/user/u1", ApiError(500))
        home.load_receipt_history()
        assert home.recommended_promotions == []
        assert not home.is_loading_recommendations

    def test_saved_promotions_show_more(self, home, fake_api):
        fake_api.respond("GET", "/promotions/saved/u1", [promo_json(i) for i in range(5)])
        home.load_saved_promotions()
        assert len(home.displayed_saved_promotions) == 3
        home.toggle_show_more_saved_promotions()
        assert len(home.displayed_saved_promotions) == 5


class TestHomeStoreScanning:

    def test_process_ocr(self, home, fake_api):
        fake_api.respond("POST", "/ocr/scan", OCR_RESULT)
        assert home.process_ocr("r.jpg", b"img") is True
        assert home.scanner.extracted_data == OCR_RESULT
        assert not home.is_processing

    def test_process_ocr_failure(self, home, fake_api):
        fake_api.respond("POST", "/ocr/scan", {"merchantName": "KFC"})
        assert home.process_ocr("r.jpg", b"img") is False

    def test_save_receipt_flow(self, home, fake_api):
        fake_api.respond("POST", "/ocr/scan", OCR_RESULT)
        fake_api.respond("POST", "/receipts", {"receipt": {"id": "r9", "totalAmount": 12.3}, "pointsAwarded": 12})
        fake_api.respond("GET", "/receipts/user/u1", [])
        fake_api.respond("GET", "/promotions/match", [promo_json(1), promo_json(2, "Cafes")])
        home.monthly_expenses = 100
        home.process_ocr("r.jpg", b"img")

        saved = home.save_receipt()

        assert saved["id"] == "r9"
        assert saved["category"] == "Fast Food"
        assert home.monthly_expenses == pytest.approx(112.3)
        assert home.notification.message == "Receipt saved! You earned 12 points."
        assert home.notification.visible
        assert [g["name"] for g in home.recommended_promotions] == ["Cafes", "Fast Food"]
        assert home.scanner.extracted_data is None
        assert not home.is_processing

    def test_save_incomplete_receipt(self, home, fake_api):
        with pytest.raises(ValueError):
            home.save_receipt()
        assert fake_api.calls == []

    def test_save_failure_keeps_scan(self, home, fake_api):
        fake_api.respond("POST", "/ocr/scan", OCR_RESULT)
        fake_api.respond("POST", "/receipts", ApiError(500))
        home.process_ocr("r.jpg", b"img")

        with pytest.raises(ApiError):
            home.save_receipt()

        assert home.scanner.extracted_data == OCR_RESULT
        assert home.monthly_expenses == 0
        assert not home.is_processing


class TestHomeStorePromotions:

    def test_save_promotion(self, home, fake_api):
        fake_api.respond("POST", "/promotions/saved/u1/1", {})
        fake_api.respond("GET", "/promotions/saved/u1", [promo_json(1)])
        home.view_promotion(deal(1))

        home.save_promotion(deal(1))

        assert [p.id for p in home.saved_promotions] == [1]
        assert home.notification.message == "Promotion saved successfully!"
        assert home.selected_promotion is None

    def test_save_duplicate(self, home, fake_api):
        home.saved_promotions = [deal(1)]
        with pytest.raises(ValueError):
            home.save_promotion(deal(1))
        assert fake_api.calls == []

    def test_remove_promotion(self, home, fake_api):
        fake_api.respond("GET", "/promotions/saved/u1", [promo_json(1), promo_json(2)])
        fake_api.respond("DELETE", "/promotions/saved/u1/1", None)
        home.load_saved_promotions()

        home.remove_promotion(1)

        assert [p.id for p in home.saved_promotions] == [2]
        assert home.notification.message == "Promotion removed!"
