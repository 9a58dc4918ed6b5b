"""Dashboard summary computed from the in-memory collections"""

from decimal import Decimal
from typing import Sequence

from bizflow.constants import TransactionType
from bizflow.models import Customer, DashboardSummary, Product, Transaction


def compute_summary(
    transactions: Sequence[Transaction],
    customers: Sequence[Customer],
    products: Sequence[Product],
) -> DashboardSummary:
    """
    Pure function of current state; refunds count towards neither total.
    """
    total_income = sum(
        (t.amount for t in transactions if t.type == TransactionType.INCOME.value),
        Decimal("0")
    )
    total_expenses = sum(
        (t.amount for t in transactions if t.type == TransactionType.EXPENSE.value),
        Decimal("0")
    )

    return DashboardSummary(
        total_income=total_income,
        total_expenses=total_expenses,
        balance=total_income - total_expenses,
        customers_count=len(customers),
        products_count=len(products),
        low_stock_count=sum(1 for p in products if p.is_low_stock),
    )
