from datetime import date
from decimal import Decimal

import pandas as pd

from finance.aggregation import (
    CENT,
    Kind,
    as_date,
    compute_recent_window,
    rank_categories,
    sum_by_category,
    window_start,
)

TOP_EXPENSES = 5


def _to_cents(amount: Decimal) -> int:
    return int(amount.scaleb(2).to_integral_value())


def _from_cents(cents) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT)


def _transactions_df(transactions):
    # Build a DataFrame of the window's transactions, amounts in integer cents
    if not transactions:
        return pd.DataFrame(columns=['date', 'cents', 'type', 'category'])
    data = [{
        'date': tx.occurred_on,
        'cents': _to_cents(tx.amount),
        'type': tx.kind.value,
        'category': tx.category,
    } for tx in transactions]
    df = pd.DataFrame(data)
    df['date'] = pd.to_datetime(df['date'])
    return df


def monthly_trend(transactions, start: date, today: date):
    """Income, expense and savings per calendar month from ``start`` to ``today``.

    Months without transactions are reported with zero totals. Transactions
    dated after ``today``'s month are left out of the table.
    """
    months = pd.period_range(start=pd.Timestamp(start), end=pd.Timestamp(today), freq='M').astype(str)
    table = pd.DataFrame(0, index=months, columns=[Kind.INCOME.value, Kind.EXPENSE.value], dtype='int64')

    df = _transactions_df(transactions)
    if not df.empty:
        df['ym'] = df['date'].dt.to_period('M').astype(str)
        grouped = df.groupby(['ym', 'type'])['cents'].sum().unstack(fill_value=0)
        table = grouped.reindex(index=table.index, columns=table.columns, fill_value=0).astype('int64')

    table['savings'] = table[Kind.INCOME.value] - table[Kind.EXPENSE.value]
    rows = []
    for ym, row in table.iterrows():
        incomes = _from_cents(row[Kind.INCOME.value])
        expenses = _from_cents(row[Kind.EXPENSE.value])
        rows.append({
            'month': ym,
            'incomes': incomes,
            'expenses': expenses,
            'savings': _from_cents(row['savings']),
            'savings_rate': savings_rate(incomes, expenses),
        })
    return rows


def _percent(part: Decimal, whole: Decimal) -> float:
    if whole <= 0:
        return 0.0
    return float((part / whole * 100).quantize(Decimal('0.1')))


def savings_rate(total_income: Decimal, total_expense: Decimal) -> float:
    return _percent(total_income - total_expense, total_income)


def category_shares(totals):
    """Ranked categories, each with its share of the side's total in percent."""
    whole = sum(totals.values(), Decimal('0'))
    return [dict(entry, percentage=_percent(entry['amount'], whole)) for entry in rank_categories(totals)]


def top_expenses(expense_transactions, limit: int = TOP_EXPENSES):
    # sorted() is stable, so equal amounts keep the feed order
    return sorted(expense_transactions, key=lambda tx: tx.amount, reverse=True)[:limit]


def build_analytics(expenses, incomes, days: int, today: date = None):
    today = as_date(today or date.today())
    window = compute_recent_window(expenses, incomes, days, today)
    transactions = window['transactions']
    expense_txs = [tx for tx in transactions if tx.kind == Kind.EXPENSE]
    income_txs = [tx for tx in transactions if tx.kind == Kind.INCOME]

    summary = dict(window['summary'])
    summary['savings_rate'] = savings_rate(summary['total_income'], summary['total_expense'])

    return {
        'period': summary['period'],
        'summary': summary,
        'monthly': monthly_trend(transactions, window_start(days, today), today),
        'expense_categories': category_shares(sum_by_category(expense_txs)),
        'income_categories': category_shares(sum_by_category(income_txs)),
        'top_expenses': top_expenses(expense_txs),
    }
