"""Ledger summaries computed from plain transaction lists.

Amounts are converted to the base currency with each record's ``rate``.
"""

import re
from datetime import date

from talkledger.models.schemas import Category, LedgerSettings, Transaction

MONTH_EXPENSE_RE = re.compile(r"(本月|這個月|這月|这个月|这月|this month).*(總|总)?(支出|花費|花了|spent|spending|expense)", re.IGNORECASE)
MONTH_CATEGORY_RE = re.compile(r"(本月|這個月|這月|这个月|这月)\s*(?P<name>[^\s\d?？]{1,8})")
BALANCE_RE = re.compile(r"查帳|統計|餘額|结余|結餘|balance|summary|stats", re.IGNORECASE)
RECENT_RE = re.compile(r"最近(交易|紀錄|記錄|幾筆)|recent( transactions)?", re.IGNORECASE)
UNCLAIMED_RE = re.compile(r"未請款|待請款|unclaimed", re.IGNORECASE)
RANKING_RE = re.compile(r"分類支出|支出排行|分類排行|category ranking|by category", re.IGNORECASE)
BUDGET_RE = re.compile(r"預算|budget", re.IGNORECASE)


def month_key(today: date | None = None) -> str:
    return (today or date.today()).strftime("%Y-%m")


def base_amount(tx: Transaction) -> float:
    return tx.amount * (tx.rate or 1.0)


def format_amount(amount: float, currency: str = "TWD") -> str:
    if amount == int(amount):
        return f"{currency} {int(amount):,}"
    return f"{currency} {amount:,.2f}"


def in_month(txs: list[Transaction], month: str) -> list[Transaction]:
    return [t for t in txs if t.date.startswith(month)]


def month_summary(txs: list[Transaction], month: str) -> dict:
    monthly = in_month(txs, month)
    income = sum(base_amount(t) for t in monthly if t.type == "income")
    expense = sum(base_amount(t) for t in monthly if t.type == "expense")
    return {
        "month": month,
        "income": round(income, 2),
        "expense": round(expense, 2),
        "balance": round(income - expense, 2),
        "count": len(monthly),
    }


def category_ranking(
    txs: list[Transaction],
    categories: list[Category],
    month: str | None = None,
    tx_type: str = "expense",
    limit: int = 5,
) -> list[dict]:
    """Categories by total spent, largest first."""
    names = {c.id: c.name for c in categories}
    pool = in_month(txs, month) if month else txs
    totals: dict[str, dict] = {}
    for t in pool:
        if t.type != tx_type:
            continue
        row = totals.setdefault(
            t.category_id,
            {"category_id": t.category_id, "name": names.get(t.category_id, t.category_id), "total": 0.0, "count": 0},
        )
        row["total"] += base_amount(t)
        row["count"] += 1
    ranked = sorted(totals.values(), key=lambda r: r["total"], reverse=True)
    for row in ranked:
        row["total"] = round(row["total"], 2)
    return ranked[:limit]


def budget_delta(
    txs: list[Transaction],
    settings: LedgerSettings,
    categories: list[Category],
    month: str,
) -> dict:
    """Spent vs. budget for the month, overall and per budgeted category."""
    names = {c.id: c.name for c in categories}
    expenses = [t for t in in_month(txs, month) if t.type == "expense"]
    spent = sum(base_amount(t) for t in expenses)
    per_category = []
    for category_id, budget in settings.category_budgets.items():
        used = sum(base_amount(t) for t in expenses if t.category_id == category_id)
        per_category.append({
            "category_id": category_id,
            "name": names.get(category_id, category_id),
            "budget": budget,
            "spent": round(used, 2),
            "remaining": round(budget - used, 2),
            "over": used > budget,
        })
    return {
        "month": month,
        "monthly_budget": settings.monthly_budget,
        "spent": round(spent, 2),
        "remaining": round(settings.monthly_budget - spent, 2) if settings.monthly_budget else None,
        "over": bool(settings.monthly_budget) and spent > settings.monthly_budget,
        "categories": per_category,
    }


def unclaimed(txs: list[Transaction]) -> list[Transaction]:
    return [t for t in txs if t.claim_amount > 0 and not t.claimed]


def recent(txs: list[Transaction], limit: int = 5) -> list[Transaction]:
    return sorted(txs, key=lambda t: (t.date, t.created_at), reverse=True)[:limit]


def tx_line(tx: Transaction, names: dict[str, str] | None = None) -> str:
    sign = "+" if tx.type == "income" else "-"
    category = (names or {}).get(tx.category_id, tx.category_id)
    line = f"{tx.date} {sign}{format_amount(tx.amount, tx.currency)} [{category}]"
    if tx.note:
        line += f" {tx.note}"
    if tx.claim_amount > 0:
        line += f" (claim {format_amount(tx.claim_amount, tx.currency)}{', done' if tx.claimed else ''})"
    return line


def quick_report(
    txs: list[Transaction],
    categories: list[Category],
    settings: LedgerSettings,
    month: str,
) -> str:
    summary = month_summary(txs, month)
    currency = settings.base_currency
    lines = [
        f"{month}: income {format_amount(summary['income'], currency)}, "
        f"expense {format_amount(summary['expense'], currency)}, "
        f"balance {format_amount(summary['balance'], currency)} ({summary['count']} records)"
    ]
    ranking = category_ranking(txs, categories, month=month, limit=3)
    if ranking:
        top = ", ".join(f"{r['name']} {format_amount(r['total'], currency)}" for r in ranking)
        lines.append(f"Top categories: {top}")
    if settings.monthly_budget:
        delta = budget_delta(txs, settings, categories, month)
        state = "over" if delta["over"] else "left"
        lines.append(f"Budget: {format_amount(abs(delta['remaining']), currency)} {state}")
    pending = unclaimed(txs)
    if pending:
        total = sum(t.claim_amount for t in pending)
        lines.append(f"Unclaimed: {len(pending)} records, {format_amount(total, currency)}")
    return "\n".join(lines)


def quick_answer(
    text: str,
    txs: list[Transaction],
    categories: list[Category],
    settings: LedgerSettings,
    today: date | None = None,
) -> str | None:
    """Answer a short stats query, or None if the text is not one."""
    month = month_key(today)
    currency = settings.base_currency
    names = {c.id: c.name for c in categories}
    summary = month_summary(txs, month)

    match = MONTH_CATEGORY_RE.search(text)
    if match:
        hit = next((c for c in categories if c.name and c.name in match.group("name")), None)
        if hit:
            used = sum(base_amount(t) for t in in_month(txs, month) if t.type == "expense" and t.category_id == hit.id)
            return f"Spent on {hit.name} this month: {format_amount(used, currency)}"

    if MONTH_EXPENSE_RE.search(text):
        return f"Expenses this month: {format_amount(summary['expense'], currency)}"

    if RECENT_RE.search(text):
        latest = recent(txs)
        if not latest:
            return "No transactions yet."
        return "Recent transactions:\n" + "\n".join(tx_line(t, names) for t in latest)

    if UNCLAIMED_RE.search(text):
        pending = unclaimed(txs)
        if not pending:
            return "Nothing waiting to be claimed."
        total = sum(t.claim_amount for t in pending)
        lines = [tx_line(t, names) for t in pending[:10]]
        return f"Unclaimed: {len(pending)} records, {format_amount(total, currency)}\n" + "\n".join(lines)

    if RANKING_RE.search(text):
        ranking = category_ranking(txs, categories, month=month)
        if not ranking:
            return "No expenses this month."
        return "Expenses by category this month:\n" + "\n".join(
            f"{i}. {r['name']} {format_amount(r['total'], currency)}" for i, r in enumerate(ranking, 1)
        )

    if BUDGET_RE.search(text):
        return quick_report(txs, categories, settings, month)

    if BALANCE_RE.search(text):
        return (
            f"This month: income {format_amount(summary['income'], currency)}, "
            f"expense {format_amount(summary['expense'], currency)}, "
            f"balance {format_amount(summary['balance'], currency)}"
        )
    return None
