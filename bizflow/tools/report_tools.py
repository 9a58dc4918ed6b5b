"""Report figures derived from the in-memory collections (pandas)"""

import math
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

import pandas as pd

from bizflow.constants import TransactionType
from bizflow.models import Entity, Product, Transaction
from bizflow.utils.logging import get_logger

logger = get_logger(__name__)

TRANSACTION_COLUMNS = ['id', 'date', 'amount', 'type', 'category']


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def transactions_frame(transactions: Sequence[Transaction]) -> pd.DataFrame:
    """
    One row per transaction with parsed dates and float amounts.

    Rows whose date cannot be parsed keep NaT in `date`.
    """
    df = pd.DataFrame([t.model_dump(mode="json") for t in transactions])

    if df.empty:
        return pd.DataFrame(columns=TRANSACTION_COLUMNS)

    df['amount'] = df['amount'].astype(float)
    df['date'] = pd.to_datetime(df['date'], errors='coerce', utc=True, format='ISO8601').dt.tz_localize(None)
    return df


def _income(df: pd.DataFrame) -> pd.DataFrame:
    return df[df['type'] == TransactionType.INCOME.value]


def calculate_profitability(transactions: Sequence[Transaction]) -> int:
    """Rounded (income - expenses) / income as a percentage; 0 without income"""
    df = transactions_frame(transactions)
    income = _income(df)['amount'].sum()
    expenses = df[df['type'] == TransactionType.EXPENSE.value]['amount'].sum()

    if income == 0:
        return 0
    return _round_half_up((income - expenses) / income * 100)


def calculate_growth_rate(transactions: Sequence[Transaction], now: Optional[datetime] = None) -> int:
    """
    Income growth of the last three months against the three before

    The windows start on the first day of a month: [now-3 months, now] and
    [now-6 months, now-3 months). 100 when the earlier window had no income
    but the recent one has some.
    """
    now = pd.Timestamp(now or datetime.now())
    three_months_ago = (now.to_period('M') - 3).start_time
    six_months_ago = (now.to_period('M') - 6).start_time

    income = _income(transactions_frame(transactions)).dropna(subset=['date'])

    recent = income[(income['date'] >= three_months_ago) & (income['date'] <= now)]['amount'].sum()
    previous = income[(income['date'] >= six_months_ago) & (income['date'] < three_months_ago)]['amount'].sum()

    logger.debug("Growth windows", recent_total=float(recent), previous_total=float(previous))

    if previous == 0:
        return 100 if recent > 0 else 0
    return _round_half_up((recent - previous) / previous * 100)


def calculate_average_order(transactions: Sequence[Transaction]) -> float:
    """Mean amount of income transactions; 0.0 without any"""
    income = _income(transactions_frame(transactions))
    if income.empty:
        return 0.0
    return float(income['amount'].mean())


def totals_by_category(transactions: Sequence[Transaction]) -> Dict[str, Dict[str, float]]:
    """
    Income and expense totals per category

    Returns:
        {'Sales': {'income': 1200.0, 'expense': 0.0}, ...}
    """
    df = transactions_frame(transactions)
    df = df[df['type'].isin([TransactionType.INCOME.value, TransactionType.EXPENSE.value])]

    if df.empty:
        return {}

    table = df.pivot_table(
        index='category',
        columns='type',
        values='amount',
        aggfunc='sum',
        fill_value=0.0
    )
    for column in (TransactionType.INCOME.value, TransactionType.EXPENSE.value):
        if column not in table.columns:
            table[column] = 0.0

    return {
        str(category): {
            'income': float(row[TransactionType.INCOME.value]),
            'expense': float(row[TransactionType.EXPENSE.value])
        }
        for category, row in table.iterrows()
    }


def out_of_stock_count(products: Sequence[Product]) -> int:
    """Products with no stock left (stock <= 0)"""
    return sum(1 for p in products if p.stock <= 0)


def build_report(transactions: Sequence[Transaction], products: Sequence[Product],
                 now: Optional[datetime] = None) -> Dict[str, Any]:
    """All report figures in one dict (CLI `report` command)"""
    return {
        'profitability_percent': calculate_profitability(transactions),
        'growth_rate_percent': calculate_growth_rate(transactions, now=now),
        'average_order': calculate_average_order(transactions),
        'totals_by_category': totals_by_category(transactions),
        'out_of_stock_count': out_of_stock_count(products),
    }


def export_collection_csv(items: Sequence[Entity], path: Optional[str] = None) -> str:
    """
    Render a collection as CSV (camelCase headers, list cells joined by ", ")

    Args:
        items: Entities of one kind
        path: Also write the CSV there when given

    Returns:
        CSV text
    """
    df = pd.DataFrame([item.to_wire() for item in items])

    for column in df.columns:
        df[column] = df[column].apply(lambda v: ", ".join(map(str, v)) if isinstance(v, list) else v)

    csv_text = df.to_csv(index=False)
    if path:
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(csv_text)
        logger.info("Collection exported to CSV", path=path, rows=len(df))
    return csv_text
