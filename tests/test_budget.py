from datetime import date

import pytest

from paperworth.api import ApiError
from paperworth.budget import (BudgetService, apply_expense_locally, budget_history, category_share,
                               chart_bar_height, current_month_year, default_budget, is_budget_at_risk,
                               month_label, percentage_used, previous_months, remaining_budget,
                               rescale_categories, summarize_budget, validate_budget_settings)
from paperworth.models import Budget, BudgetCategory


def make_budget(month="2025-03", total=1000, spent=0, categories=None):
    return Budget(user_id="u1", month_year=month, total_budget=total, total_spent=spent,
                  categories=categories or [])


def budget_json(month="2025-03", total=1000, spent=0, categories=None):
    return {"userId": "u1", "monthYear": month, "totalBudget": total, "totalSpent": spent,
            "categories": categories or []}


# ============================================================================
# MONTH HELPERS
# ============================================================================

class TestMonths:

    def test_current_month_year_is_zero_padded(self):
        assert current_month_year(date(2025, 3, 14)) == "2025-03"

    def test_previous_months_cross_year(self):
        assert previous_months(3, date(2025, 2, 10)) == ["2025-02", "2025-01", "2024-12"]

    def test_month_label(self):
        assert month_label("2025-03") == "Mar 2025"
        assert month_label("2025-03", with_year=False) == "Mar"


# ============================================================================
# ARITHMETIC
# ============================================================================

class TestBudgetArithmetic:

    def test_category_share_rounds_half_up(self):
        assert category_share(125, 1000) == 13
        assert category_share(300, 1000) == 30
        assert category_share(10, 0) == 0

    def test_rescale_categories_keeps_proportions(self):
        amounts = {"Groceries": 300, "Dining": 200}
        assert rescale_categories(amounts, 1000, 2000) == {"Groceries": 600.0, "Dining": 400.0}

    def test_rescale_rounds_to_cents(self):
        assert rescale_categories({"A": 100}, 300, 1000) == {"A": 333.33}

    def test_rescale_ignores_non_positive_totals(self):
        amounts = {"A": 50}
        assert rescale_categories(amounts, 0, 100) == amounts
        assert rescale_categories(amounts, 100, 0) == amounts

    def test_percentage_used_is_capped(self):
        assert percentage_used(500, 1000) == 50
        assert percentage_used(1500, 1000) == 100
        assert percentage_used(10, 0) == 0

    def test_remaining_can_go_negative(self):
        assert remaining_budget(1000, 1200) == -200

    def test_at_risk_above_80(self):
        assert not is_budget_at_risk(80)
        assert is_budget_at_risk(81)

    def test_summarize_budget(self):
        budget = make_budget(total=1000, spent=900, categories=[
            BudgetCategory("Dining", budget_amount=200, spent_amount=100, transactions=2),
            BudgetCategory("Groceries", budget_amount=400, spent_amount=800, transactions=5),
        ])
        summary = summarize_budget(budget)

        assert summary["remaining"] == 100
        assert summary["percentage_used"] == 90
        assert summary["at_risk"] is True
        assert [r["name"] for r in summary["categories"]] == ["Groceries", "Dining"]
        assert summary["categories"][0]["percentage"] == 200
        assert summary["categories"][1]["color"] == "#FF9800"

    def test_summarize_uses_share_of_spend_without_category_budget(self):
        budget = make_budget(spent=200, categories=[BudgetCategory("Others", spent_amount=50)])
        assert summarize_budget(budget)["categories"][0]["percentage"] == 25

    def test_budget_history_oldest_first(self):
        budgets = [make_budget("2025-03", 1000, 400), make_budget("2025-01", 1000, 1100),
                   make_budget("2025-02", 0, 0)]
        history, savings = budget_history(budgets)

        assert [h["month"] for h in history] == ["Jan 2025", "Feb 2025", "Mar 2025"]
        assert savings[0] == {"month": "Jan", "saved": -100, "percentage": -10}
        assert savings[1]["percentage"] == 0
        assert savings[2]["saved"] == 600

    def test_chart_bar_height(self):
        history = [{"amount": 50}, {"amount": 200}]
        assert chart_bar_height(100, history) == 90
        assert chart_bar_height(0, [{"amount": 0}]) == 10
        assert chart_bar_height(0, []) == 10

    def test_default_budget_shares(self):
        budget = default_budget("u1", "2025-03")
        assert budget.total_budget == 1500
        assert budget.find_category("groceries").budget_amount == 450
        assert sum(c.budget_amount for c in budget.categories) == 1500

    def test_apply_expense_to_existing_category(self):
        budget = make_budget(categories=[BudgetCategory("Dining", 200, 10, 1)])
        apply_expense_locally(budget, "dining", 15)
        cat = budget.find_category("Dining")
        assert cat.spent_amount == 25
        assert cat.transactions == 2
        assert budget.total_spent == 15

    def test_apply_expense_adds_new_category_at_five_percent(self):
        budget = make_budget(total=1000)
        apply_expense_locally(budget, "Retail", 40)
        cat = budget.find_category("Retail")
        assert cat.budget_amount == 50
        assert cat.spent_amount == 40
        assert cat.transactions == 1

    def test_validate_budget_settings(self):
        assert validate_budget_settings(100, {"A": 0}) == []
        errors = validate_budget_settings(0, {"A": -1})
        assert len(errors) == 2


# ============================================================================
# SERVICE
# ============================================================================

class TestBudgetService:

    def test_fetch_budget_from_backend(self, fake_api):
        fake_api.respond("GET", "/budgets/user/u1/month/2025-03", budget_json(total=800))
        budget = BudgetService(fake_api).load_user_budget("u1", "2025-03")
        assert budget.total_budget == 800

    def test_fetch_creates_empty_budget_when_missing(self, fake_api):
        fake_api.respond("POST", "/budgets", lambda json, **kw: {**json, "id": "b1"})
        budget = BudgetService(fake_api).fetch_budget("u1", "2025-03")

        assert budget.id == "b1"
        assert budget.total_budget == 0
        assert fake_api.paths() == ["/budgets/user/u1/month/2025-03", "/budgets"]

    def test_fetch_falls_back_to_default(self, fake_api):
        budget = BudgetService(fake_api).fetch_budget("u1", "2025-03")
        assert budget.total_budget == 1500
        assert budget.month_year == "2025-03"

    def test_history_loads_each_month_and_sets_current(self, fake_api):
        fake_api.respond("GET", "/budgets/user/u1/month/2025-03", budget_json("2025-03", 1000, 100))
        fake_api.respond("GET", "/budgets/user/u1/month/2025-02", budget_json("2025-02", 1000, 900))
        fake_api.respond("GET", "/budgets/user/u1/month/2025-01", budget_json("2025-01", 1000, 500))
        service = BudgetService(fake_api)

        budgets = service.load_budget_history("u1", 3, today=date(2025, 3, 5))

        assert [b.month_year for b in budgets] == ["2025-03", "2025-02", "2025-01"]
        assert service.current_budget.month_year == "2025-03"
        assert service.current_budget.total_spent == 100

    def test_history_survives_a_failing_month(self, fake_api):
        fake_api.respond("GET", "/budgets/user/u1/month/2025-03", budget_json("2025-03", 1000, 100))
        fake_api.respond("GET", "/budgets/user/u1/month/2025-01", budget_json("2025-01", 800, 500))
        fake_api.respond("GET", "/budgets/user/u1/month/2025-02", ApiError(500))
        fake_api.respond("POST", "/budgets", ApiError(503))

        budgets = BudgetService(fake_api).load_budget_history("u1", 3, today=date(2025, 3, 5))

        assert [b.month_year for b in budgets] == ["2025-03", "2025-02", "2025-01"]
        assert [b.total_spent for b in budgets] == [100, 0, 500]
        assert budgets[1].total_budget == default_budget("u1", "2025-02").total_budget
        assert budgets[2].total_budget == 800

    def test_history_unexpected_error_gives_empty_month(self, fake_api):
        fake_api.respond("GET", "/budgets/user/u1/month/2025-03", budget_json("2025-03", 1000, 100))

        def broken(**kwargs):
            raise RuntimeError("bad payload")

        fake_api.respond("GET", "/budgets/user/u1/month/2025-02", broken)

        budgets = BudgetService(fake_api).load_budget_history("u1", 2, today=date(2025, 3, 5))

        assert budgets[0].total_spent == 100
        assert (budgets[1].month_year, budgets[1].total_budget, budgets[1].categories) == ("2025-02", 0, [])

    def test_add_expense_requires_loaded_budget(self, fake_api):
        with pytest.raises(RuntimeError):
            BudgetService(fake_api).add_expense_to_budget({"category": "Dining", "totalAmount": 5})

    def test_add_expense_posts_to_backend(self, fake_api):
        fake_api.respond("GET", "/budgets/user/u1/month/2025-03", budget_json())
        fake_api.respond("POST", "/budgets/user/u1/month/2025-03/expense", budget_json(spent=12.5))
        service = BudgetService(fake_api)
        service.load_user_budget("u1", "2025-03")

        budget = service.add_expense_to_budget({"category": "Dining", "totalAmount": "12.50"})

        assert budget.total_spent == 12.5
        assert fake_api.calls[-1][2]["json"] == {"category": "Dining", "amount": 12.5}

    def test_add_expense_updates_locally_on_failure(self, fake_api):
        fake_api.respond("GET", "/budgets/user/u1/month/2025-03", budget_json())
        fake_api.respond("POST", "/budgets/user/u1/month/2025-03/expense", ApiError(500))
        service = BudgetService(fake_api)
        service.load_user_budget("u1", "2025-03")

        budget = service.add_expense_to_budget({"totalAmount": 20})

        assert budget.total_spent == 20
        assert budget.find_category("Others").spent_amount == 20

    def test_save_budget_settings_order(self, fake_api):
        fake_api.respond("GET", "/budgets/user/u1/month/2025-03", budget_json())
        fake_api.respond("PUT", "/budgets/user/u1/month/2025-03/total", budget_json(total=2000))
        fake_api.respond("PUT", "/budgets/user/u1/month/2025-03/category/Dining", budget_json(total=2000))
        fake_api.respond("PUT", "/budgets/user/u1/month/2025-03/category/Retail", budget_json(total=2000))
        service = BudgetService(fake_api)
        service.load_user_budget("u1", "2025-03")

        service.save_budget_settings(2000, {"Dining": 400, "Retail": 300})

        assert fake_api.paths("PUT") == [
            "/budgets/user/u1/month/2025-03/total",
            "/budgets/user/u1/month/2025-03/category/Dining",
            "/budgets/user/u1/month/2025-03/category/Retail",
        ]

    def test_save_budget_settings_rejects_invalid(self, fake_api):
        service = BudgetService(fake_api)
        service.current_budget = make_budget()
        with pytest.raises(ValueError):
            service.save_budget_settings(0, {})
        assert fake_api.calls == []
