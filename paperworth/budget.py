# paperworth/budget.py
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .api import ApiError
from .categories import DEFAULT_CATEGORY, DEFAULT_CATEGORY_SHARES, category_color, category_icon
from .models import Budget, BudgetCategory
from .utils import round_half_up, to_float

logger = logging.getLogger("paperworth.budget")

AT_RISK_PERCENT = 80
NEW_CATEGORY_SHARE = 0.05
CHART_MAX_HEIGHT = 180
CHART_MIN_HEIGHT = 10


# ---------------- Month helpers ----------------
def current_month_year(today: date = None) -> str:
    today = today or date.today()
    return f"{today.year}-{today.month:02d}"


def previous_months(count: int, today: date = None) -> List[str]:
    """Current month first, then going back one month at a time."""
    today = today or date.today()
    months = []
    year, month = today.year, today.month
    for _ in range(count):
        months.append(f"{year}-{month:02d}")
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return months


def month_label(month_year: str, with_year: bool = True) -> str:
    year, month = month_year.split("-")
    d = datetime(int(year), int(month), 1)
    return d.strftime("%b %Y") if with_year else d.strftime("%b")


# ---------------- Budget arithmetic ----------------
def category_share(amount, total) -> int:
    """Share of the total budget allotted to one category, in whole percent."""
    if total <= 0:
        return 0
    return round_half_up(amount / total * 100)


def rescale_categories(amounts: Dict[str, float], old_total, new_total) -> Dict[str, float]:
    """Scale every category amount by new_total / old_total, rounded to cents.

    Returns the amounts unchanged when either total is not positive.
    """
    if old_total <= 0 or new_total <= 0:
        return dict(amounts)
    return {name: round(amount / old_total * new_total, 2) for name, amount in amounts.items()}


def percentage_used(spent, budget) -> int:
    if budget <= 0:
        return 0
    return min(round_half_up(spent / budget * 100), 100)


def remaining_budget(budget, spent) -> float:
    # not clamped: overspending shows as a negative remainder
    return budget - spent


def is_budget_at_risk(percentage) -> bool:
    return percentage > AT_RISK_PERCENT


def summarize_budget(budget: Budget) -> Dict[str, Any]:
    total_spent = budget.total_spent
    rows = []
    for cat in budget.categories:
        if cat.budget_amount > 0:
            pct = round_half_up(cat.spent_amount / cat.budget_amount * 100)
        elif total_spent > 0:
            pct = round_half_up(cat.spent_amount / total_spent * 100)
        else:
            pct = 0
        rows.append({
            "name": cat.category,
            "amount": cat.spent_amount,
            "budget": cat.budget_amount,
            "percentage": pct,
            "color": category_color(cat.category),
            "icon": category_icon(cat.category),
            "transactions": cat.transactions,
        })
    rows.sort(key=lambda r: r["amount"], reverse=True)

    used = percentage_used(total_spent, budget.total_budget)
    return {
        "total_spent": total_spent,
        "monthly_budget": budget.total_budget,
        "remaining": remaining_budget(budget.total_budget, total_spent),
        "percentage_used": used,
        "at_risk": is_budget_at_risk(used),
        "categories": rows,
    }


def budget_history(budgets: List[Budget]) -> Tuple[List[Dict], List[Dict]]:
    """Monthly spend and savings rows, oldest month first."""
    ordered = sorted(budgets, key=lambda b: b.month_year)
    history = [{"month": month_label(b.month_year), "amount": b.total_spent} for b in ordered]
    savings = []
    for b in ordered:
        saved = b.total_budget - b.total_spent
        pct = round_half_up(saved / b.total_budget * 100) if b.total_budget > 0 else 0
        savings.append({"month": month_label(b.month_year, with_year=False), "saved": saved, "percentage": pct})
    return history, savings


def chart_bar_height(amount, history: List[Dict], max_height: int = CHART_MAX_HEIGHT) -> float:
    max_amount = max((h["amount"] for h in history), default=0)
    if max_amount == 0:
        return CHART_MIN_HEIGHT
    return amount / max_amount * max_height


def default_budget(user_id, month_year: str) -> Budget:
    total = config.DEFAULT_MONTHLY_BUDGET
    categories = [
        BudgetCategory(category=name, budget_amount=total * share / 100)
        for name, share in DEFAULT_CATEGORY_SHARES.items()
    ]
    return Budget(user_id=user_id, month_year=month_year, total_budget=total, total_spent=0, categories=categories)


def empty_budget(user_id, month_year: str) -> Budget:
    return Budget(user_id=user_id, month_year=month_year)


def apply_expense_locally(budget: Budget, category: str, amount: float) -> Budget:
    cat = budget.find_category(category)
    if cat:
        cat.spent_amount += amount
        cat.transactions += 1
    else:
        budget.categories.append(BudgetCategory(
            category=category,
            budget_amount=budget.total_budget * NEW_CATEGORY_SHARE,
            spent_amount=amount,
            transactions=1,
        ))
    budget.total_spent += amount
    return budget


def validate_budget_settings(total, category_amounts: Dict[str, float]) -> List[str]:
    errors = []
    if total is None or total < 1:
        errors.append("Total budget must be at least 1")
    for name, amount in category_amounts.items():
        if amount is None or amount < 0:
            errors.append(f"{name} budget cannot be negative")
    return errors


# ---------------- Service ----------------
class BudgetService:
    """Budget REST resource plus the user's current month budget."""

    def __init__(self, api):
        self.api = api
        self.current_budget: Optional[Budget] = None

    def _month_path(self, budget: Budget) -> str:
        return f"/budgets/user/{budget.user_id}/month/{budget.month_year}"

    def _require_budget(self) -> Budget:
        if self.current_budget is None:
            raise RuntimeError("Budget not initialized. Call load_user_budget first.")
        return self.current_budget

    def fetch_budget(self, user_id, month_year: str) -> Budget:
        """Budget for one month without touching current_budget.

        Falls back to asking the backend for an empty budget, then to the local default.
        """
        try:
            return Budget.from_dict(self.api.get(f"/budgets/user/{user_id}/month/{month_year}") or {})
        except ApiError as e:
            logger.warning(f"Budget {month_year} not loaded for user {user_id}: {e}")
        try:
            created = self.api.post("/budgets", json=empty_budget(user_id, month_year).to_dict())
            return Budget.from_dict(created or {})
        except ApiError as e:
            logger.error(f"Could not create budget {month_year} for user {user_id}: {e}")
        return default_budget(user_id, month_year)

    def load_user_budget(self, user_id, month_year: str = None) -> Budget:
        self.current_budget = self.fetch_budget(user_id, month_year or current_month_year())
        return self.current_budget

    def load_budget_history(self, user_id, months: int = 3, today: date = None) -> List[Budget]:
        """Load several months concurrently. A month that fails entirely shows as empty."""
        month_list = previous_months(months, today)

        def load(month):
            try:
                return self.fetch_budget(user_id, month)
            except Exception as e:
                logger.error(f"Error loading budget for {month}: {e}")
                return empty_budget(user_id, month)

        with ThreadPoolExecutor(max_workers=len(month_list) or 1) as pool:
            budgets = list(pool.map(load, month_list))

        this_month = current_month_year(today)
        for b in budgets:
            if b.month_year == this_month:
                self.current_budget = b
        return budgets

    def add_expense_to_budget(self, receipt: Dict[str, Any]) -> Budget:
        budget = self._require_budget()
        category = receipt.get("category") or DEFAULT_CATEGORY
        amount = to_float(receipt.get("totalAmount") or receipt.get("totalExpense") or 0)
        try:
            updated = self.api.post(f"{self._month_path(budget)}/expense",
                                    json={"category": category, "amount": amount})
            self.current_budget = Budget.from_dict(updated or {})
        except ApiError as e:
            logger.error(f"Expense sync failed, updating budget locally: {e}")
            apply_expense_locally(budget, category, amount)
        return self.current_budget

    def set_total_budget(self, amount: float) -> Budget:
        budget = self._require_budget()
        try:
            updated = self.api.put(f"{self._month_path(budget)}/total", json={"amount": amount})
            self.current_budget = Budget.from_dict(updated or {})
        except ApiError as e:
            logger.error(f"Error updating total budget: {e}")
        return self.current_budget

    def set_category_budget(self, category: str, amount: float) -> Budget:
        budget = self._require_budget()
        try:
            updated = self.api.put(f"{self._month_path(budget)}/category/{category}", json={"amount": amount})
            self.current_budget = Budget.from_dict(updated or {})
        except ApiError as e:
            logger.error(f"Error updating {category} budget: {e}")
        return self.current_budget

    def save_budget(self, budget: Budget) -> Budget:
        try:
            saved = self.api.post("/budgets", json=budget.to_dict())
            self.current_budget = Budget.from_dict(saved or {})
        except ApiError as e:
            logger.error(f"Error saving budget: {e}")
            return budget
        return self.current_budget

    def save_budget_settings(self, total: float, category_amounts: Dict[str, float]) -> Budget:
        """Total first, then each category in order."""
        errors = validate_budget_settings(total, category_amounts)
        if errors:
            raise ValueError("; ".join(errors))
        self.set_total_budget(total)
        for name, amount in category_amounts.items():
            self.set_category_budget(name, amount)
        logger.info(f"Budget settings saved for {self.current_budget.month_year}")
        return self.current_budget
