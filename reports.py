from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from models import TransactionType
from periods import DateRange, parse_timestamp

Row = Mapping[str, Any]

# Bucket for rows that carry no category.
UNCATEGORIZED: Mapping[str, Any] = {"id": "uncategorized", "name": "Uncategorized"}


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def generate_color(seed: str) -> str:
    """Stable ``hsl()`` colour for a category id."""
    hash_ = 0
    for char in seed:
        hash_ = _to_int32((hash_ << 5) - hash_ + ord(char))
    hash_ = abs(hash_)
    hue = hash_ % 360
    saturation = 70 + (hash_ % 30)
    lightness = 50 + (hash_ % 20)
    return f"hsl({hue}, {saturation}%, {lightness}%)"


def _type_of(value: Any) -> Optional[str]:
    return value.value if isinstance(value, Enum) else value


def _category_of(txn: Row) -> Mapping[str, Any]:
    category = txn.get("category")
    if isinstance(category, Mapping):
        if category.get("id") is None:
            return UNCATEGORIZED
        return category
    if category is None:
        return UNCATEGORIZED
    return {"id": category}


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return parse_timestamp(str(value))


@dataclass(frozen=True)
class CategoryBucket:
    id: str
    name: Optional[str]
    type: Optional[str]
    value: float
    color: str


def aggregate_by_category(
    transactions: Iterable[Row], type: TransactionType | str
) -> list[CategoryBucket]:
    wanted = _type_of(type)
    buckets: dict[str, dict[str, Any]] = {}
    for txn in transactions:
        if _type_of(txn.get("type")) != wanted:
            continue
        category = _category_of(txn)
        category_id = str(category.get("id"))
        bucket = buckets.get(category_id)
        if bucket is None:
            bucket = buckets[category_id] = {
                "id": category_id,
                "name": category.get("name"),
                "type": _type_of(category.get("type")),
                "value": 0,
                "color": generate_color(category_id),
            }
        bucket["value"] += txn.get("amount") or 0
    return [CategoryBucket(**bucket) for bucket in buckets.values()]


class BudgetStatus(str, Enum):
    good = "good"
    nearing = "nearing"
    fully_used = "fully_used"
    over = "over"


@dataclass(frozen=True)
class BudgetBreakdown:
    used: float
    available: float
    total_budget: float

    @property
    def usage_percentage(self) -> int:
        if self.total_budget <= 0:
            return 0
        return round(self.used / self.total_budget * 100)

    @property
    def status(self) -> BudgetStatus:
        if self.used > self.total_budget:
            return BudgetStatus.over
        pct = self.usage_percentage
        if pct == 100:
            return BudgetStatus.fully_used
        if 80 <= pct < 100:
            return BudgetStatus.nearing
        return BudgetStatus.good

    @property
    def status_message(self) -> str:
        status = self.status
        if status is BudgetStatus.over:
            return f"Exceeded budget by ${self.used - self.total_budget:.2f}"
        if status is BudgetStatus.fully_used:
            return "Budget fully used"
        if status is BudgetStatus.nearing:
            return "Nearing budget limit"
        return "Budget looks good"


def budget_window(budget: Row) -> DateRange:
    return DateRange(_timestamp(budget["start"]), _timestamp(budget["end"]))


def budget_breakdown(budget: Row, transactions: Iterable[Row]) -> BudgetBreakdown:
    window = budget_window(budget)
    used = 0
    for txn in transactions:
        if _type_of(txn.get("type")) != TransactionType.expense.value:
            continue
        created = _timestamp(txn.get("created_at"))
        if created is not None and not window.contains(created):
            continue
        used += txn.get("amount") or 0
    total = budget.get("amount") or 0
    return BudgetBreakdown(used=used, available=total - used, total_budget=total)


@dataclass(frozen=True)
class HistoryPoint:
    day: date
    amount: float
    count: int


def history_series(
    transactions: Iterable[Row],
    type: TransactionType | str,
    category_id: Optional[str] = None,
) -> list[HistoryPoint]:
    wanted = _type_of(type)
    totals: dict[date, float] = defaultdict(float)
    counts: dict[date, int] = defaultdict(int)
    for txn in transactions:
        if _type_of(txn.get("type")) != wanted:
            continue
        if category_id and str(_category_of(txn).get("id")) != category_id:
            continue
        created = _timestamp(txn.get("created_at"))
        if created is None:
            continue
        totals[created.date()] += txn.get("amount") or 0
        counts[created.date()] += 1
    return [HistoryPoint(day, totals[day], counts[day]) for day in sorted(totals)]


def totals_by_type(transactions: Iterable[Row]) -> dict[str, float]:
    income = expense = 0
    for txn in transactions:
        kind = _type_of(txn.get("type"))
        if kind == TransactionType.income.value:
            income += txn.get("amount") or 0
        elif kind == TransactionType.expense.value:
            expense += txn.get("amount") or 0
    return {"income": income, "expense": expense, "net": income - expense}
