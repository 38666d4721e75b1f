from sqlalchemy.orm import Session
from db.models import Transaction, InventoryItem
from datetime import datetime, timedelta
from collections import Counter


def _month_bounds(year, month):
    start = datetime(year, month, 1)
    if month == 12:
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, month + 1, 1)
    return start, end


class FinanceAnalyzer:
    def __init__(self, db: Session):
        self.db = db

    def _transactions_between(self, start, end=None):
        query = self.db.query(Transaction).filter(Transaction.created_at >= start)
        if end is not None:
            query = query.filter(Transaction.created_at < end)
        return query.order_by(Transaction.created_at, Transaction.id).all()

    def _low_stock(self):
        items = self.db.query(InventoryItem).order_by(InventoryItem.id).all()
        return [i for i in items if i.is_low]

    def get_today_stats(self, now=None):
        """
        Aggregates today's transactions. customer_count is the number of income entries.
        """
        now = now or datetime.now()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        txs = self._transactions_between(start_of_day, start_of_day + timedelta(days=1))

        income = [t for t in txs if t.type == "income"]
        expense = [t for t in txs if t.type == "expense"]

        # Counter keeps first-seen order, so ties go to the earliest service
        service_counts = Counter(t.category_label for t in income)
        top_service = service_counts.most_common(1)[0][0] if service_counts else None

        return {
            "total_income": sum(t.amount for t in income),
            "total_expense": sum(t.amount for t in expense),
            "transaction_count": len(txs),
            "customer_count": len(income),
            "top_service": top_service,
        }

    def get_month_stats(self, year=None, month=None, now=None):
        """
        Aggregates one calendar month, with per-day figures up to today and the
        income growth against the previous month.
        """
        now = now or datetime.now()
        year = year or now.year
        month = month or now.month
        start, end = _month_bounds(year, month)
        txs = self._transactions_between(start, end)

        total_income = sum(t.amount for t in txs if t.type == "income")
        total_expense = sum(t.amount for t in txs if t.type == "expense")

        if (year, month) == (now.year, now.month):
            days = now.day
        else:
            days = (end - start).days

        daily = {}
        for offset in range(days):
            day = (start + timedelta(days=offset)).strftime("%Y-%m-%d")
            daily[day] = {"date": day, "income": 0.0, "expense": 0.0}
        for tx in txs:
            key = tx.created_at.strftime("%Y-%m-%d")
            if key in daily:
                daily[key][tx.type] += tx.amount

        prev_start, prev_end = _month_bounds(*((year - 1, 12) if month == 1 else (year, month - 1)))
        prev_income = sum(t.amount for t in self._transactions_between(prev_start, prev_end) if t.type == "income")
        growth_rate = None
        if prev_income > 0:
            growth_rate = (total_income - prev_income) / prev_income * 100

        return {
            "year": year,
            "month": month,
            "period": f"{year}年{month}月",
            "total_income": total_income,
            "total_expense": total_expense,
            "net_profit": total_income - total_expense,
            "transaction_count": len(txs),
            "avg_daily_income": round(total_income / days) if days > 0 else 0,
            "growth_rate": growth_rate,
            "daily_data": list(daily.values()),
        }

    def get_period_stats(self, time_range="today", now=None):
        """
        Dashboard figures for today, the rolling last 7 days, or the month so far.
        """
        now = now or datetime.now()
        if time_range == "today":
            since = now.replace(hour=0, minute=0, second=0, microsecond=0)
        elif time_range == "week":
            since = now - timedelta(days=7)
        elif time_range == "year":
            since = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        else:
            since = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        txs = self._transactions_between(since)
        income = sum(t.amount for t in txs if t.type == "income")
        expense = sum(t.amount for t in txs if t.type == "expense")
        customers = len({t.customer_id for t in txs if t.customer_id}) or \
            len([t for t in txs if t.type == "income"])

        return {
            "time_range": time_range,
            "total_income": income,
            "total_expense": expense,
            "net_profit": income - expense,
            "customer_count": customers,
            "transaction_count": len(txs),
        }

    def get_dashboard_insights(self, time_range="today", now=None):
        stats = self.get_period_stats(time_range, now)
        label = {"today": "今日", "week": "本周", "month": "本月", "year": "今年"}.get(time_range, "本月")
        insights = []

        if stats["total_income"] > 0:
            income = stats["total_income"]
            insights.append({
                "type": "tip",
                "title": "收入情况",
                "content": f"{label}收入¥{income:g}，{'表现不错！' if income > 500 else '继续加油~'}",
            })

        low = self._low_stock()
        if low:
            insights.append({
                "type": "warning",
                "title": "库存预警",
                "content": f"{'、'.join(i.name for i in low)}库存偏低，建议补货",
            })

        if not insights:
            insights.append({
                "type": "tip",
                "title": "开始记账",
                "content": '对AI说"收了38块"开始记录第一笔账',
            })
        return insights

    def analyze(self, now=None):
        """
        One-line health check comparing today with the month's daily average,
        stock levels and the expense/income ratio.
        """
        now = now or datetime.now()
        today = self.get_today_stats(now)
        month = self.get_month_stats(now.year, now.month, now)
        low = self._low_stock()

        avg_daily = month["total_income"] / (now.day or 1)

        if avg_daily > 0 and today["total_income"] > avg_daily * 1.2:
            insight, kind = "今日超出日均，不错！", "good"
        elif low:
            insight, kind = f"{'、'.join(i.name for i in low)}该补货了", "warning"
        elif month["total_expense"] > month["total_income"] * 0.4:
            insight, kind = "支出偏高，注意成本", "warning"
        else:
            insight, kind = "经营正常，继续加油", "good"

        return {
            "insight_type": kind,
            "title": "智能分析",
            "content": insight,
            "stats": {"today": today, "month": month, "low_stock": len(low)},
        }

    def format_summary_text(self, data):
        """Convert month stats to a readable string for the AI."""
        by_service = Counter()
        start, end = _month_bounds(data["year"], data["month"])
        for tx in self._transactions_between(start, end):
            if tx.type == "income":
                by_service[tx.category_label or "其他"] += tx.amount

        service_str = "\n".join([f"- {k}: {v:.2f}" for k, v in by_service.most_common()])
        low = self._low_stock()
        growth = data.get("growth_rate")

        return (
            f"--- 月度经营汇总 ---\n"
            f"Period: {data['period']}\n"
            f"Total Income: {data['total_income']:.2f}\n"
            f"Total Expense: {data['total_expense']:.2f}\n"
            f"Net Profit: {data['net_profit']:.2f}\n"
            f"Avg Daily Income: {data['avg_daily_income']:.2f}\n"
            f"Growth vs Last Month: {'N/A' if growth is None else f'{growth:.1f}%'}\n"
            f"Income by Service:\n{service_str or '- none'}\n\n"
            f"--- 库存 ---\n"
            f"Low Stock: {'、'.join(i.name for i in low) or 'none'}"
        )
