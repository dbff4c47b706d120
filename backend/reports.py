"""
backend/reports.py

Aggregations behind the budget overview, reports and dashboard views.

Pure functions over lists of records; pandas does the grouping. Empty input
always produces zeros / empty lists rather than NaN.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

import pandas as pd

from domains.project.models.document import Document
from domains.project.models.finance import FinanceRecord
from domains.project.models.task import Task


def _finance_frame(records: Sequence[FinanceRecord]) -> pd.DataFrame:
    rows = [
        {"type": r.type, "category": r.category, "amount": r.amount, "date": r.date}
        for r in records
    ]
    df = pd.DataFrame(rows, columns=["type", "category", "amount", "date"])
    df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)
    return df


def finance_summary(records: Sequence[FinanceRecord]) -> Dict[str, Any]:
    """Total income, total expenses, net balance and record count."""
    df = _finance_frame(records)
    total_income = float(df.loc[df["type"] == "income", "amount"].sum())
    total_expenses = float(df.loc[df["type"] == "expense", "amount"].sum())
    return {
        "total_income": total_income,
        "total_expenses": total_expenses,
        "net_balance": total_income - total_expenses,
        "total_records": int(len(df)),
    }


def finance_by_category(records: Sequence[FinanceRecord]) -> List[Dict[str, Any]]:
    """
    Totals per (type, category), largest first.

    Returns:
        [{"type": "expense", "category": "Land", "amount": 2500000.0, "count": 1}, ...]
    """
    df = _finance_frame(records)
    if df.empty:
        return []
    grouped = (
        df.groupby(["type", "category"], as_index=False)
        .agg(amount=("amount", "sum"), count=("amount", "size"))
        .sort_values(["amount", "category"], ascending=[False, True])
    )
    return [
        {"type": row["type"], "category": row["category"], "amount": float(row["amount"]), "count": int(row["count"])}
        for row in grouped.to_dict("records")
    ]


def monthly_cash_flow(records: Sequence[FinanceRecord]) -> List[Dict[str, Any]]:
    """Income, expenses and net per calendar month (YYYY-MM), oldest first."""
    df = _finance_frame(records)
    if df.empty:
        return []
    df["month"] = pd.to_datetime(df["date"], utc=True).dt.strftime("%Y-%m")
    pivot = df.pivot_table(index="month", columns="type", values="amount", aggfunc="sum", fill_value=0.0)
    for col in ("income", "expense"):
        if col not in pivot.columns:
            pivot[col] = 0.0
    pivot = pivot.sort_index()
    return [
        {
            "month": month,
            "income": float(row["income"]),
            "expenses": float(row["expense"]),
            "net": float(row["income"] - row["expense"]),
        }
        for month, row in pivot.iterrows()
    ]


def task_status_counts(tasks: Sequence[Task]) -> Dict[str, int]:
    """Number of tasks per status value."""
    if not tasks:
        return {}
    counts = pd.Series([t.status for t in tasks]).value_counts()
    return {str(status): int(n) for status, n in counts.items()}


def document_stats(documents: Sequence[Document]) -> Dict[str, int]:
    """File count, folder count and total size of files in bytes."""
    df = pd.DataFrame(
        [{"type": d.type, "size": d.size} for d in documents],
        columns=["type", "size"],
    )
    files = df[df["type"] == "file"]
    return {
        "total_files": int(len(files)),
        "total_folders": int((df["type"] == "folder").sum()),
        "total_size": int(files["size"].sum()) if not files.empty else 0,
    }
