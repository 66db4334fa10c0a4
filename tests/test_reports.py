import re
from datetime import date

from models import TransactionType
from reports import (
    UNCATEGORIZED,
    BudgetBreakdown,
    BudgetStatus,
    aggregate_by_category,
    budget_breakdown,
    generate_color,
    history_series,
    totals_by_type,
)


def txn(amount, type_, category_id, name=None, created_at="2025-01-10T09:00:00"):
    category = {"id": category_id, "type": type_}
    if name is not None:
        category["name"] = name
    return {"amount": amount, "type": type_, "category": category, "created_at": created_at}


def test_aggregate_by_category_sums_requested_type() -> None:
    buckets = aggregate_by_category(
        [
            {"amount": 10, "type": "expense", "category": {"id": "a"}},
            {"amount": 5, "type": "expense", "category": {"id": "a"}},
            {"amount": 7, "type": "income", "category": {"id": "b"}},
        ],
        "expense",
    )

    assert len(buckets) == 1
    assert buckets[0].id == "a"
    assert buckets[0].value == 15


def test_aggregate_groups_by_id_not_name() -> None:
    buckets = aggregate_by_category(
        [
            txn(3, "expense", "c1", name="Food"),
            txn(4, "expense", "c2", name="Food"),
        ],
        TransactionType.expense,
    )

    assert sorted((b.id, b.name, b.value) for b in buckets) == [
        ("c1", "Food", 3),
        ("c2", "Food", 4),
    ]
    assert {b.type for b in buckets} == {"expense"}


def test_rows_without_category_share_one_uncategorized_bucket() -> None:
    buckets = aggregate_by_category(
        [
            {"amount": 2, "type": "expense", "category": None},
            {"amount": 3, "type": "expense"},
            {"amount": 5, "type": "expense", "category": {"id": None, "name": None}},
            txn(7, "expense", "c1", name="Food"),
        ],
        "expense",
    )

    by_id = {b.id: b for b in buckets}
    assert "None" not in by_id
    assert by_id[UNCATEGORIZED["id"]].value == 10
    assert by_id[UNCATEGORIZED["id"]].name == "Uncategorized"
    assert by_id["c1"].value == 7


def test_generate_color_is_stable_hsl() -> None:
    first = generate_color("2b1f0c2e-7f34-4c55-9d9d-0d5b1c1e2a10")

    assert first == generate_color("2b1f0c2e-7f34-4c55-9d9d-0d5b1c1e2a10")
    match = re.fullmatch(r"hsl\((\d+), (\d+)%, (\d+)%\)", first)
    assert match
    hue, saturation, lightness = map(int, match.groups())
    assert 0 <= hue < 360
    assert 70 <= saturation < 100
    assert 50 <= lightness < 70


def test_bucket_color_follows_category_id() -> None:
    [bucket] = aggregate_by_category([txn(1, "income", "salary")], "income")
    assert bucket.color == generate_color("salary")


def test_budget_with_zero_total_reports_zero_percent() -> None:
    breakdown = BudgetBreakdown(used=0, available=0, total_budget=0)

    assert breakdown.usage_percentage == 0
    assert breakdown.status is BudgetStatus.good


def test_budget_breakdown_counts_expenses_inside_window() -> None:
    budget = {
        "amount": 200,
        "start": "2025-01-01T00:00:00",
        "end": "2025-01-31T23:59:59",
    }
    transactions = [
        txn(150, "expense", "c1", created_at="2025-01-03T10:00:00"),
        txn(100, "expense", "c1", created_at="2025-01-20T10:00:00"),
        txn(900, "income", "c2", created_at="2025-01-21T10:00:00"),
        txn(50, "expense", "c1", created_at="2025-02-02T10:00:00"),
    ]

    breakdown = budget_breakdown(budget, transactions)

    assert breakdown.used == 250
    assert breakdown.available == -50
    assert breakdown.total_budget == 200
    assert breakdown.usage_percentage == 125
    assert breakdown.status is BudgetStatus.over
    assert breakdown.status_message == "Exceeded budget by $50.00"


def test_budget_status_thresholds() -> None:
    assert BudgetBreakdown(80, 20, 100).status_message == "Nearing budget limit"
    assert BudgetBreakdown(100, 0, 100).status_message == "Budget fully used"
    assert BudgetBreakdown(10, 90, 100).status_message == "Budget looks good"


def test_history_series_buckets_by_day() -> None:
    transactions = [
        txn(4.5, "expense", "c1", created_at="2025-01-02T08:00:00"),
        txn(3, "expense", "c2", created_at="2025-01-02T18:00:00"),
        txn(12, "expense", "c1", created_at="2025-01-01T12:00:00"),
        txn(1000, "income", "c3", created_at="2025-01-01T12:00:00"),
    ]

    series = history_series(transactions, "expense")

    assert [(p.day, p.amount, p.count) for p in series] == [
        (date(2025, 1, 1), 12, 1),
        (date(2025, 1, 2), 7.5, 2),
    ]
    only_c1 = history_series(transactions, "expense", category_id="c1")
    assert [p.amount for p in only_c1] == [12, 4.5]


def test_totals_by_type() -> None:
    totals = totals_by_type(
        [txn(100, "income", "c1"), txn(30, "expense", "c2"), txn(20, "expense", "c2")]
    )
    assert totals == {"income": 100, "expense": 50, "net": 50}
