# paperworth/rewards.py
import logging
from typing import Any, Callable, List, Optional, Tuple

from .api import ApiError
from .models import PointTransaction, Reward, UserPoints, UserReward
from .utils import parse_datetime, round_half_up, utcnow

logger = logging.getLogger("paperworth.rewards")

# (threshold, tier name), ascending
TIERS = [(0, "Bronze"), (500, "Silver"), (2000, "Gold"), (5000, "Platinum")]

WELCOME_BONUS_POINTS = 100
WELCOME_BONUS_SOURCE = "WELCOME_BONUS"
ALREADY_CLAIMED_ERROR = "Welcome bonus has already been claimed"

REWARD_CATEGORIES = [
    {"id": "WELCOME", "name": "Welcome Bonus"},
    {"id": "all", "name": "All Rewards"},
    {"id": "VOUCHER", "name": "Vouchers"},
    {"id": "ELECTRONICS", "name": "Electronics"},
    {"id": "GIFT_CARD", "name": "Gift Cards"},
    {"id": "HOME", "name": "Home"},
    {"id": "LIFESTYLE", "name": "Lifestyle"},
    {"id": "EXPERIENCE", "name": "Experiences"},
]

STATUS_COLORS = {"FULFILLED": "green", "PENDING": "orange", "CANCELLED": "red"}


# ---------------- Tier arithmetic ----------------
def user_tier(total_points: int) -> str:
    name = TIERS[0][1]
    for threshold, tier in TIERS:
        if total_points >= threshold:
            name = tier
    return name


def current_tier_threshold(total_points: int) -> int:
    current = 0
    for threshold, _ in TIERS:
        if total_points >= threshold:
            current = threshold
    return current


def next_tier(total_points: int) -> Tuple[int, str]:
    """Threshold and name of the next tier; at the top tier the threshold is the total itself."""
    for threshold, name in TIERS[1:]:
        if total_points < threshold:
            return threshold, name
    return total_points, TIERS[-1][1]


def tier_progress(total_points: int) -> int:
    current = current_tier_threshold(total_points)
    threshold, _ = next_tier(total_points)
    needed = threshold - current
    if needed <= 0:
        return 100
    return min(round_half_up((total_points - current) / needed * 100), 100)


def points_for_next_tier(total_points: int) -> int:
    threshold, _ = next_tier(total_points)
    return max(0, threshold - total_points)


def can_afford(points: Optional[UserPoints], reward: Reward) -> bool:
    if points is None:
        return False
    return points.available_points >= reward.points_cost


def filter_rewards(rewards: List[Reward], category: str) -> List[Reward]:
    if category == "all":
        return list(rewards)
    return [r for r in rewards if r.category == category]


def has_claimed_welcome_bonus(transactions: List[PointTransaction]) -> bool:
    return any(t.source == WELCOME_BONUS_SOURCE and t.transaction_type == "EARNED" for t in transactions)


def sort_by_date(items: list, key: Callable[[Any], Any]) -> list:
    """Newest first; undated entries sink to the bottom."""
    def sort_key(item):
        parsed = parse_datetime(key(item))
        return (parsed is not None, parsed or utcnow())
    return sorted(items, key=sort_key, reverse=True)


# ---------------- Services ----------------
class RewardsService:
    """Reads fall back to [] / None so the rewards page always renders."""

    def __init__(self, api):
        self.api = api

    def _get_list(self, operation, path, model, params=None) -> list:
        try:
            return [model.from_dict(d) for d in (self.api.get(path, params=params) or [])]
        except ApiError as e:
            logger.error(f"{operation} failed: {e}")
            return []

    def get_available_rewards(self) -> List[Reward]:
        return self._get_list("get_available_rewards", "/rewards/available", Reward)

    def get_rewards_by_category(self, category: str) -> List[Reward]:
        return self._get_list(f"get_rewards_by_category/{category}", f"/rewards/category/{category}", Reward)

    def get_affordable_rewards(self, user_id) -> List[Reward]:
        return self._get_list("get_affordable_rewards", f"/rewards/affordable/{user_id}", Reward)

    def get_reward_by_id(self, reward_id) -> Optional[Reward]:
        try:
            data = self.api.get(f"/rewards/{reward_id}")
        except ApiError as e:
            logger.error(f"get_reward_by_id/{reward_id} failed: {e}")
            return None
        return Reward.from_dict(data) if data else None

    def get_user_points(self, user_id) -> Optional[UserPoints]:
        try:
            data = self.api.get(f"/rewards/points/{user_id}")
        except ApiError as e:
            logger.error(f"get_user_points failed: {e}")
            return None
        return UserPoints.from_dict(data) if data else None

    def get_redemption_history(self, user_id) -> List[UserReward]:
        return self._get_list("get_redemption_history", f"/rewards/history/{user_id}", UserReward)

    def get_point_transactions(self, user_id, days: int = None) -> List[PointTransaction]:
        params = {"days": days} if days else None
        return self._get_list("get_point_transactions", f"/rewards/transactions/{user_id}",
                              PointTransaction, params=params)

    def redeem_reward(self, user_id, reward_id) -> UserReward:
        data = self.api.post(f"/rewards/redeem/{user_id}/{reward_id}")
        logger.info(f"User {user_id} redeemed reward {reward_id}")
        return UserReward.from_dict(data or {})

    def claim_welcome_bonus(self, user_id) -> Any:
        result = self.api.post(f"/rewards/welcome-bonus/{user_id}")
        logger.info(f"Welcome bonus claimed for user {user_id}")
        return result


class UserPointsService:
    def __init__(self, api):
        self.api = api

    def get_user_points(self, user_id) -> UserPoints:
        return UserPoints.from_dict(self.api.get(f"/user-points/{user_id}") or {})

    def get_transactions(self, user_id) -> List[PointTransaction]:
        return [PointTransaction.from_dict(t) for t in self.api.get(f"/user-points/{user_id}/transactions") or []]

    def get_transactions_by_type(self, user_id, transaction_type: str) -> List[PointTransaction]:
        data = self.api.get(f"/user-points/{user_id}/transactions/type/{transaction_type}") or []
        return [PointTransaction.from_dict(t) for t in data]

    def get_transactions_by_source(self, user_id, source: str) -> List[PointTransaction]:
        data = self.api.get(f"/user-points/{user_id}/transactions/source/{source}") or []
        return [PointTransaction.from_dict(t) for t in data]


class UserRewardService:
    def __init__(self, api):
        self.api = api

    def _list(self, path, params=None) -> List[UserReward]:
        return [UserReward.from_dict(r) for r in self.api.get(path, params=params) or []]

    def get_user_rewards(self, user_id):
        return self._list(f"/user-rewards/{user_id}")

    def get_user_rewards_by_status(self, user_id, status: str):
        return self._list(f"/user-rewards/{user_id}/status/{status}")

    def get_recent_rewards(self, user_id, days: int = 30):
        return self._list(f"/user-rewards/{user_id}/recent", params={"days": days})

    def get_expiring_rewards(self, user_id, days: int = 30):
        return self._list(f"/user-rewards/{user_id}/expiring", params={"days": days})


# ---------------- Page state ----------------
class RewardsState:
    """What the rewards page shows, with optimistic updates after redeem / claim.

    The next load() replaces everything with the server's numbers.
    """

    def __init__(self, service: RewardsService, user_id):
        self.service = service
        self.user_id = user_id
        self.points: Optional[UserPoints] = None
        self.available_rewards: List[Reward] = []
        self.redemption_history: List[UserReward] = []
        self.recent_transactions: List[PointTransaction] = []
        self.has_claimed_welcome_bonus = False
        self.selected_category = "all"

    def load(self):
        self.points = self.service.get_user_points(self.user_id)
        self.available_rewards = self.service.get_available_rewards()
        self.redemption_history = sort_by_date(self.service.get_redemption_history(self.user_id),
                                               lambda r: r.redeemed_date)
        self.recent_transactions = sort_by_date(self.service.get_point_transactions(self.user_id, 30),
                                                lambda t: t.transaction_date)
        self.has_claimed_welcome_bonus = has_claimed_welcome_bonus(
            self.service.get_point_transactions(self.user_id))
        return self

    @property
    def total_points(self) -> int:
        return self.points.total_points if self.points else 0

    @property
    def tier(self) -> str:
        return user_tier(self.total_points)

    @property
    def progress(self) -> int:
        return tier_progress(self.total_points) if self.points else 0

    @property
    def filtered_rewards(self) -> List[Reward]:
        return filter_rewards(self.available_rewards, self.selected_category)

    def apply_redemption(self, reward: Reward, user_reward: UserReward):
        if self.points:
            self.points.available_points -= reward.points_cost
            self.points.spent_points += reward.points_cost
        self.redemption_history.insert(0, user_reward)

    def apply_welcome_bonus(self):
        if self.points:
            self.points.total_points += WELCOME_BONUS_POINTS
            self.points.available_points += WELCOME_BONUS_POINTS
        self.recent_transactions.insert(0, PointTransaction(
            id="new-bonus",
            user_id=self.user_id,
            points=WELCOME_BONUS_POINTS,
            transaction_type="EARNED",
            source=WELCOME_BONUS_SOURCE,
            reference_id=self.user_id,
            transaction_date=utcnow().isoformat(),
            description="Welcome bonus for joining PaperWorth!",
        ))
        self.has_claimed_welcome_bonus = True

    def redeem(self, reward: Reward) -> UserReward:
        user_reward = self.service.redeem_reward(self.user_id, reward.id)
        self.apply_redemption(reward, user_reward)
        self.available_rewards = self.service.get_available_rewards()
        return user_reward

    def claim_welcome_bonus(self) -> bool:
        """True when the bonus was granted now. Raises ApiError for other failures."""
        try:
            self.service.claim_welcome_bonus(self.user_id)
        except ApiError as e:
            if isinstance(e.body, dict) and e.body.get("error") == ALREADY_CLAIMED_ERROR:
                self.has_claimed_welcome_bonus = True
                return False
            raise
        self.apply_welcome_bonus()
        return True
