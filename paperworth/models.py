# paperworth/models.py
# lightweight model classes mirroring the backend JSON (camelCase on the wire)
from typing import Any, Dict, List, Optional

from .utils import to_float


class User:
    def __init__(self, id, name, email, created_at=None, firebase_id=None, photo_url=None):
        self.id = id
        self.name = name
        self.email = email
        self.created_at = created_at
        self.firebase_id = firebase_id
        self.photo_url = photo_url

    @property
    def first_name(self) -> str:
        return (self.name or "User").split(" ")[0]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=data.get("id"),
            name=data.get("name") or "User",
            email=data.get("email", ""),
            created_at=data.get("createdAt"),
            firebase_id=data.get("firebaseId"),
            photo_url=data.get("photoURL"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "name": self.name, "email": self.email, "createdAt": self.created_at}
        if self.firebase_id:
            data["firebaseId"] = self.firebase_id
        if self.photo_url:
            data["photoURL"] = self.photo_url
        return data


class ReceiptItem:
    def __init__(self, name, price=0.0, quantity=1):
        self.name = name
        self.price = price
        self.quantity = quantity

    @classmethod
    def from_value(cls, value) -> "ReceiptItem":
        # OCR sometimes returns bare item strings
        if isinstance(value, str):
            return cls(name=value, price=0.0, quantity=1)
        return cls(
            name=value.get("name", ""),
            price=to_float(value.get("price")),
            quantity=int(value.get("quantity") or 1),
        )

    def to_dict(self):
        return {"name": self.name, "price": self.price, "quantity": self.quantity}


class Receipt:
    def __init__(self, id, user_id, merchant_name, total_expense, date_of_purchase,
                 category=None, items=None, image_url=None, scan_date=None, additional_fields=None):
        self.id = id
        self.user_id = user_id
        self.merchant_name = merchant_name
        self.total_expense = total_expense
        self.date_of_purchase = date_of_purchase
        self.category = category
        self.items = items or []
        self.image_url = image_url
        self.scan_date = scan_date
        self.additional_fields = additional_fields or {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Receipt":
        total = data.get("totalExpense")
        if total is None:
            total = data.get("totalAmount")
        return cls(
            id=data.get("id"),
            user_id=data.get("userId"),
            merchant_name=data.get("merchantName", ""),
            total_expense=to_float(total),
            date_of_purchase=data.get("dateOfPurchase"),
            category=data.get("category"),
            items=[ReceiptItem.from_value(i) for i in (data.get("items") or [])],
            image_url=data.get("imageUrl"),
            scan_date=data.get("scanDate"),
            additional_fields=data.get("additionalFields") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "merchantName": self.merchant_name,
            "totalExpense": self.total_expense,
            "dateOfPurchase": self.date_of_purchase,
            "category": self.category,
            "items": [i.to_dict() for i in self.items],
            "imageUrl": self.image_url,
            "scanDate": self.scan_date,
            "additionalFields": self.additional_fields,
        }


class BudgetCategory:
    def __init__(self, category, budget_amount=0.0, spent_amount=0.0, transactions=0):
        self.category = category
        self.budget_amount = budget_amount
        self.spent_amount = spent_amount
        self.transactions = transactions

    @classmethod
    def from_dict(cls, data):
        return cls(
            category=data.get("category", "Others"),
            budget_amount=to_float(data.get("budgetAmount")),
            spent_amount=to_float(data.get("spentAmount")),
            transactions=int(data.get("transactions") or 0),
        )

    def to_dict(self):
        return {
            "category": self.category,
            "budgetAmount": self.budget_amount,
            "spentAmount": self.spent_amount,
            "transactions": self.transactions,
        }


class Budget:
    def __init__(self, user_id, month_year, total_budget=0.0, total_spent=0.0, categories=None, id=None):
        self.id = id
        self.user_id = user_id
        self.month_year = month_year
        self.total_budget = total_budget
        self.total_spent = total_spent
        self.categories: List[BudgetCategory] = categories or []

    def find_category(self, name) -> Optional[BudgetCategory]:
        wanted = (name or "").lower()
        for cat in self.categories:
            if cat.category.lower() == wanted:
                return cat
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Budget":
        return cls(
            id=data.get("id"),
            user_id=data.get("userId"),
            month_year=data.get("monthYear"),
            total_budget=to_float(data.get("totalBudget")),
            total_spent=to_float(data.get("totalSpent")),
            categories=[BudgetCategory.from_dict(c) for c in (data.get("categories") or [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "userId": self.user_id,
            "monthYear": self.month_year,
            "totalBudget": self.total_budget,
            "totalSpent": self.total_spent,
            "categories": [c.to_dict() for c in self.categories],
        }
        if self.id is not None:
            data["id"] = self.id
        return data


class Promotion:
    def __init__(self, id, merchant, description, category, expiry, location=None, code=None,
                 conditions=None, image_url=None, promotion_id=None, saved_at=None):
        self.id = id
        self.merchant = merchant
        self.description = description
        self.category = category
        self.expiry = expiry
        self.location = location
        self.code = code
        self.conditions = conditions
        self.image_url = image_url
        self.promotion_id = promotion_id
        self.saved_at = saved_at

    @property
    def key(self):
        """Identity used for de-duplication (older payloads only carry promotionId)."""
        return self.id if self.id is not None else self.promotion_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Promotion":
        return cls(
            id=data.get("id"),
            merchant=data.get("merchant", ""),
            description=data.get("description", ""),
            category=data.get("category"),
            expiry=data.get("expiry"),
            location=data.get("location"),
            code=data.get("code"),
            conditions=data.get("conditions"),
            image_url=data.get("imageUrl"),
            promotion_id=data.get("promotionId"),
            saved_at=data.get("savedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "merchant": self.merchant,
            "description": self.description,
            "category": self.category,
            "expiry": self.expiry,
        }
        for key, value in (("location", self.location), ("code", self.code),
                           ("conditions", self.conditions), ("imageUrl", self.image_url),
                           ("promotionId", self.promotion_id), ("savedAt", self.saved_at)):
            if value is not None:
                data[key] = value
        return data


class SavedPromotion:
    def __init__(self, id, user_id, promotion_id, saved_at):
        self.id = id
        self.user_id = user_id
        self.promotion_id = promotion_id
        self.saved_at = saved_at

    @classmethod
    def from_dict(cls, data):
        return cls(data.get("id"), data.get("userId"), data.get("promotionId"), data.get("savedAt"))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "userId": self.user_id, "promotionId": self.promotion_id, "savedAt": self.saved_at}


class Reward:
    def __init__(self, id, name, description, points_cost, image_url=None, category=None,
                 is_available=True, quantity=0, merchant_name=None, terms_conditions=None, expiry_date=None):
        self.id = id
        self.name = name
        self.description = description
        self.points_cost = points_cost
        self.image_url = image_url
        self.category = category
        self.is_available = is_available
        self.quantity = quantity
        self.merchant_name = merchant_name
        self.terms_conditions = terms_conditions
        self.expiry_date = expiry_date

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reward":
        return cls(
            id=data.get("id"),
            name=data.get("name", ""),
            description=data.get("description", ""),
            points_cost=int(data.get("pointsCost") or 0),
            image_url=data.get("imageUrl"),
            category=data.get("category"),
            is_available=bool(data.get("isAvailable", True)),
            quantity=int(data.get("quantity") or 0),
            merchant_name=data.get("merchantName"),
            terms_conditions=data.get("termsConditions"),
            expiry_date=data.get("expiryDate"),
        )


class UserReward:
    def __init__(self, id, user_id, reward_id, reward_name, points_spent, redeemed_date,
                 status, redemption_code=None, delivery_info=None, expiry_date=None):
        self.id = id
        self.user_id = user_id
        self.reward_id = reward_id
        self.reward_name = reward_name
        self.points_spent = points_spent
        self.redeemed_date = redeemed_date
        self.status = status
        self.redemption_code = redemption_code
        self.delivery_info = delivery_info
        self.expiry_date = expiry_date

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserReward":
        return cls(
            id=data.get("id"),
            user_id=data.get("userId"),
            reward_id=data.get("rewardId"),
            reward_name=data.get("rewardName", ""),
            points_spent=int(data.get("pointsSpent") or 0),
            redeemed_date=data.get("redeemedDate"),
            status=data.get("status", "PENDING"),
            redemption_code=data.get("redemptionCode"),
            delivery_info=data.get("deliveryInfo"),
            expiry_date=data.get("expiryDate"),
        )


class UserPoints:
    def __init__(self, user_id, total_points=0, available_points=0, spent_points=0, last_updated=None, id=None):
        self.id = id
        self.user_id = user_id
        self.total_points = total_points
        self.available_points = available_points
        self.spent_points = spent_points
        self.last_updated = last_updated

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPoints":
        return cls(
            id=data.get("id"),
            user_id=data.get("userId"),
            total_points=int(data.get("totalPoints") or 0),
            available_points=int(data.get("availablePoints") or 0),
            spent_points=int(data.get("spentPoints") or 0),
            last_updated=data.get("lastUpdated"),
        )


class PointTransaction:
    def __init__(self, id, user_id, points, transaction_type, source, reference_id=None,
                 transaction_date=None, description=""):
        self.id = id
        self.user_id = user_id
        self.points = points
        self.transaction_type = transaction_type
        self.source = source
        self.reference_id = reference_id
        self.transaction_date = transaction_date
        self.description = description

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PointTransaction":
        return cls(
            id=data.get("id"),
            user_id=data.get("userId"),
            points=int(data.get("points") or 0),
            transaction_type=data.get("transactionType", ""),
            source=data.get("source", ""),
            reference_id=data.get("referenceId"),
            transaction_date=data.get("transactionDate"),
            description=data.get("description", ""),
        )
