"""Balance and breakdown computations over a user's expense and income records.

Every view the API serves (balance, month-to-date stats, history windows,
the merged transaction feed and the CSV export) goes through this module so
that sums and ordering are computed one way only.

Amounts are magnitudes. The kind of a record comes from the table it was
read from and travels with it as an explicit tag; the sign of a stored value
is never consulted. Sums use ``Decimal`` so that many cent values add up
exactly.
"""
import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

WINDOW_DAYS = (7, 30, 90, 180, 365)

ZERO = Decimal('0')
CENT = Decimal('0.01')


class Kind(str, Enum):
    EXPENSE = 'expense'
    INCOME = 'income'


class InvalidWindow(ValueError):
    """Raised when a history window is not one of ``WINDOW_DAYS``."""

    def __init__(self, value):
        self.value = value
        allowed = ', '.join(str(d) for d in WINDOW_DAYS)
        super().__init__(f'Days parameter must be one of {allowed}')


@dataclass(frozen=True)
class Transaction:
    """A money record tagged with its kind."""

    kind: Kind
    id: int
    title: str
    amount: Decimal
    category: str
    occurred_on: date
    description: str = ''
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record, kind: Kind) -> 'Transaction':
        return cls(
            kind=Kind(kind),
            id=record.id,
            title=record.title,
            amount=magnitude(record.amount),
            category=record.category,
            occurred_on=as_date(record.occurred_on),
            description=record.description or '',
            created_at=getattr(record, 'created_at', None),
            updated_at=getattr(record, 'updated_at', None),
        )


# ---------------------- Boundary helpers ----------------------
def magnitude(value) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        # str() keeps 19.99 as 19.99 instead of its binary expansion
        amount = Decimal(str(value))
    else:
        amount = Decimal(value)
    return abs(amount)


def as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def to_transactions(records: Iterable, kind: Kind) -> List[Transaction]:
    return [r if isinstance(r, Transaction) else Transaction.from_record(r, kind) for r in records]


def validate_window(raw) -> int:
    """Parse a ``days`` value coming from a caller and check it is allowed."""
    try:
        days = int(str(raw).strip())
    except (TypeError, ValueError):
        raise InvalidWindow(raw) from None
    if days not in WINDOW_DAYS:
        raise InvalidWindow(raw)
    return days


def month_start(day: date) -> date:
    return day.replace(day=1)


def window_start(days: int, today: Optional[date] = None) -> date:
    today = as_date(today or date.today())
    return today - timedelta(days=days)


def filter_since(records: Iterable, start: date) -> list:
    """Keep records whose date is on or after ``start`` (no upper bound)."""
    return [r for r in records if as_date(r.occurred_on) >= start]


# ---------------------- Sums ----------------------
def sum_amounts(records: Iterable) -> Decimal:
    total = sum((magnitude(r.amount) for r in records), ZERO)
    return total.quantize(CENT)


def sum_by_category(records: Iterable) -> Dict[str, Decimal]:
    # category keys are compared as-is: "Food" and "food " are two groups
    totals: Dict[str, Decimal] = {}
    for r in records:
        totals[r.category] = totals.get(r.category, ZERO) + magnitude(r.amount)
    return {category: amount.quantize(CENT) for category, amount in totals.items()}


def rank_categories(totals: Dict[str, Decimal]) -> List[dict]:
    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [{'category': category, 'amount': amount} for category, amount in ranked]


def _order_key(tx: Transaction):
    # ids are unique per kind only; income sorts first on a (date, id) tie
    return (tx.occurred_on, tx.id, tx.kind == Kind.INCOME)


def _merge(expenses: Iterable, incomes: Iterable) -> List[Transaction]:
    merged = to_transactions(expenses, Kind.EXPENSE) + to_transactions(incomes, Kind.INCOME)
    merged.sort(key=_order_key, reverse=True)
    return merged


# ---------------------- Operations ----------------------
def compute_balance(expenses: Sequence, incomes: Sequence) -> dict:
    total_expense = sum_amounts(expenses)
    total_income = sum_amounts(incomes)
    return {
        'total_income': total_income,
        'total_expense': total_expense,
        'balance': total_income - total_expense,
    }


def compute_monthly_stats(expenses: Sequence, incomes: Sequence, reference_date: Optional[date] = None) -> dict:
    """Month-to-date totals and per-category sums.

    Records dated on or after the first day of ``reference_date``'s month
    are counted. There is no upper bound, so a record dated later in the
    month (or later still) is included as well.
    """
    reference_date = as_date(reference_date or date.today())
    start = month_start(reference_date)
    month_expenses = filter_since(expenses, start)
    month_incomes = filter_since(incomes, start)

    totals = compute_balance(month_expenses, month_incomes)
    return {
        'month': calendar.month_name[reference_date.month],
        'year': reference_date.year,
        'total_income': totals['total_income'],
        'total_expense': totals['total_expense'],
        'monthly_balance': totals['balance'],
        'income_by_category': sum_by_category(month_incomes),
        'expense_by_category': sum_by_category(month_expenses),
    }


def compute_recent_window(expenses: Sequence, incomes: Sequence, days: int, today: Optional[date] = None) -> dict:
    """Transactions dated within the last ``days`` calendar days, with totals.

    ``days`` must already have been checked with :func:`validate_window`.
    """
    assert days in WINDOW_DAYS, days
    start = window_start(days, today)
    window_expenses = filter_since(expenses, start)
    window_incomes = filter_since(incomes, start)

    summary = compute_balance(window_expenses, window_incomes)
    summary['period'] = f'Last {days} days'
    return {
        'transactions': _merge(window_expenses, window_incomes),
        'summary': summary,
    }


def merge_all_transactions(expenses: Sequence, incomes: Sequence) -> List[Transaction]:
    return _merge(expenses, incomes)
