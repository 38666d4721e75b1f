from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from services.analyzer import FinanceAnalyzer
from services.ledger import Ledger

from conftest import NOW


@pytest.fixture()
def ledger(session) -> Ledger:
    return Ledger(session)


def test_today_stats(session, ledger: Ledger) -> None:
    ledger.add_transaction("income", 25, "haircut", "剪发", created_at=NOW)
    ledger.add_transaction("income", 200, "perm", "烫发", created_at=NOW)
    ledger.add_transaction("income", 25, "haircut", "剪发", created_at=NOW)
    ledger.add_transaction("expense", 150, "expense", "支出", created_at=NOW)
    ledger.add_transaction("income", 999, created_at=NOW - timedelta(days=1))

    stats = FinanceAnalyzer(session).get_today_stats(NOW)

    assert stats == {
        "total_income": 250,
        "total_expense": 150,
        "transaction_count": 4,
        "customer_count": 3,
        "top_service": "剪发",
    }


def test_today_stats_empty(session) -> None:
    stats = FinanceAnalyzer(session).get_today_stats(NOW)

    assert stats["total_income"] == 0
    assert stats["top_service"] is None


def test_month_stats_growth_and_daily_data(session, ledger: Ledger) -> None:
    ledger.add_transaction("income", 1000, created_at=datetime(2026, 9, 20, 10))
    ledger.add_transaction("income", 1500, created_at=datetime(2026, 10, 3, 10))
    ledger.add_transaction("expense", 300, created_at=datetime(2026, 10, 3, 12))

    stats = FinanceAnalyzer(session).get_month_stats(now=NOW)

    assert stats["period"] == "2026年10月"
    assert stats["net_profit"] == 1200
    assert stats["growth_rate"] == pytest.approx(50.0)
    assert stats["avg_daily_income"] == round(1500 / 14)
    assert len(stats["daily_data"]) == 14
    assert stats["daily_data"][2] == {"date": "2026-10-03", "income": 1500, "expense": 300}


def test_month_stats_without_previous_month(session, ledger: Ledger) -> None:
    ledger.add_transaction("income", 100, created_at=datetime(2026, 10, 1, 10))

    stats = FinanceAnalyzer(session).get_month_stats(now=NOW)

    assert stats["growth_rate"] is None


def test_past_month_covers_every_day(session) -> None:
    stats = FinanceAnalyzer(session).get_month_stats(2026, 2, now=NOW)

    assert len(stats["daily_data"]) == 28
    assert stats["avg_daily_income"] == 0


def test_week_is_a_rolling_seven_days(session, ledger: Ledger) -> None:
    ledger.add_transaction("income", 40, created_at=NOW - timedelta(days=6))
    ledger.add_transaction("income", 80, created_at=NOW - timedelta(days=8))

    stats = FinanceAnalyzer(session).get_period_stats("week", NOW)

    assert stats["total_income"] == 40
    assert stats["customer_count"] == 1


def test_period_customers_count_distinct_customers(session, ledger: Ledger) -> None:
    ledger.add_transaction("income", 40, customer_name="老李", created_at=NOW)
    ledger.add_transaction("income", 40, customer_name="老李", created_at=NOW)
    ledger.add_transaction("income", 40, created_at=NOW)

    stats = FinanceAnalyzer(session).get_period_stats("today", NOW)

    assert stats["customer_count"] == 1
    assert stats["transaction_count"] == 3


def test_dashboard_insights(session, ledger: Ledger) -> None:
    analyzer = FinanceAnalyzer(session)
    assert [i["title"] for i in analyzer.get_dashboard_insights("today", NOW)] == ["开始记账"]

    ledger.add_transaction("income", 600, created_at=NOW)
    ledger.update_inventory_item(ledger.find_inventory("护发素").id, quantity=1)

    insights = analyzer.get_dashboard_insights("today", NOW)
    assert insights[0]["content"] == "今日收入¥600，表现不错！"
    assert insights[1] == {"type": "warning", "title": "库存预警", "content": "护发素库存偏低，建议补货"}


def test_analyze_today_above_average(session, ledger: Ledger) -> None:
    ledger.add_transaction("income", 300, created_at=NOW)

    result = FinanceAnalyzer(session).analyze(NOW)

    assert result["insight_type"] == "good"
    assert result["content"] == "今日超出日均，不错！"


def test_analyze_low_stock(session, ledger: Ledger) -> None:
    ledger.update_inventory_item(ledger.find_inventory("洗发水").id, quantity=1)

    result = FinanceAnalyzer(session).analyze(NOW)

    assert result["insight_type"] == "warning"
    assert result["content"] == "洗发水该补货了"


def test_analyze_high_expense(session, ledger: Ledger) -> None:
    ledger.add_transaction("income", 1000, created_at=NOW - timedelta(days=1))
    ledger.add_transaction("expense", 500, created_at=NOW - timedelta(days=1))

    result = FinanceAnalyzer(session).analyze(NOW)

    assert result["content"] == "支出偏高，注意成本"


def test_analyze_normal(session) -> None:
    result = FinanceAnalyzer(session).analyze(NOW)

    assert result["insight_type"] == "good"
    assert result["content"] == "经营正常，继续加油"


def test_summary_text_lists_services(session, ledger: Ledger) -> None:
    ledger.add_transaction("income", 200, "perm", "烫发", created_at=NOW)
    ledger.add_transaction("income", 25, "haircut", "剪发", created_at=NOW)
    analyzer = FinanceAnalyzer(session)

    text = analyzer.format_summary_text(analyzer.get_month_stats(now=NOW))

    assert "- 烫发: 200.00\n- 剪发: 25.00" in text
    assert "Growth vs Last Month: N/A" in text
    assert "Low Stock: none" in text
