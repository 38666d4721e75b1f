from __future__ import annotations

import random
from datetime import datetime
from types import SimpleNamespace

from services.response_generator import (
    HELP_TEXT,
    UNKNOWN_REPLIES,
    ResponseGenerator,
    fmt_money,
    render_card,
)


def _item(name, quantity, unit="瓶", threshold=3):
    return SimpleNamespace(name=name, quantity=quantity, unit=unit,
                           alert_threshold=threshold, is_low=quantity <= threshold)


def test_fmt_money() -> None:
    assert fmt_money(38.0) == "38"
    assert fmt_money(38.5) == "38.5"
    assert fmt_money(None) == "0"
    assert fmt_money(12345, thousands=True) == "12,345"


def test_income_recorded_mentions_details() -> None:
    tx = SimpleNamespace(amount=280.0, category_label="烫发", customer_name="老李", payment_method="wechat")
    text = ResponseGenerator().income_recorded(tx, {"total_income": 318, "customer_count": 2})

    assert text.startswith("好的，已记录收入 280元")
    assert "📋 服务项目：烫发" in text
    assert "👤 顾客：老李" in text
    assert "💳 支付方式：微信" in text
    assert "今日累计收入：318元，接待 2 位顾客" in text
    assert "辛苦了" not in text


def test_income_query_growth_direction() -> None:
    stats = {"total_income": 1750, "total_expense": 200, "net_profit": 1550, "growth_rate": -12.5}

    text = ResponseGenerator().income_query("month", stats)

    assert text.startswith("本月经营数据")
    assert "总收入：1,750元" in text
    assert "环比下降：12.5%" in text


def test_inventory_query_single_product() -> None:
    items = [_item("洗发水", 2), _item("护发素", 8)]
    generator = ResponseGenerator()

    assert generator.inventory_query(items, "洗发水") == (
        "洗发水\n数量：2瓶\n状态：库存偏低\n\n建议补货：低于3瓶"
    )
    assert generator.inventory_query(items, "发蜡").startswith("没有找到“发蜡”的库存记录")


def test_inventory_query_overview_groups_low_items() -> None:
    text = ResponseGenerator().inventory_query([_item("洗发水", 2), _item("护发素", 8)])

    assert text == "当前库存\n需要补货：\n• 洗发水：2瓶\n\n库存正常：\n• 护发素：8瓶"


def test_greeting_follows_hour() -> None:
    generator = ResponseGenerator()
    empty = {"total_income": 0, "customer_count": 0}

    assert generator.greeting(empty, datetime(2026, 1, 1, 9)).startswith("早上好")
    assert generator.greeting(empty, datetime(2026, 1, 1, 20)).startswith("晚上好")
    busy = generator.greeting({"total_income": 120, "customer_count": 3}, datetime(2026, 1, 1, 15))
    assert "今日已收入 120元，接待 3 位顾客" in busy


def test_unknown_and_help() -> None:
    generator = ResponseGenerator(random.Random(3))

    assert generator.unknown() in UNKNOWN_REPLIES
    assert generator.help() == HELP_TEXT


def test_customer_query() -> None:
    generator = ResponseGenerator()
    regular = SimpleNamespace(name="老李", visit_count=3, total_spent=320.0,
                              last_visit=datetime(2026, 10, 2, 18, 5))

    assert generator.customer_query("老李", regular) == "老李上次来是10月02日 18:05，一共来了3次，累计消费¥320"
    assert generator.customer_query("王姐", None).startswith("还没有王姐的消费记录")


def test_render_cards() -> None:
    assert render_card(None) is None
    assert render_card({"type": "transaction", "payload": {
        "amount": 38, "category_label": "洗剪吹", "payment_method": "alipay", "today_total": 76,
    }}) == "💰 +38元 · 洗剪吹\n支付：支付宝\n今日累计 ¥76"
    assert render_card({"type": "inventory", "payload": [
        {"name": "洗发水", "quantity": 2, "unit": "瓶", "low": True},
    ]}) == "⚠️ 洗发水 2瓶"
    assert render_card({"type": "insight", "payload": {
        "insight_type": "warning", "title": "智能分析", "content": "支出偏高，注意成本",
    }}) == "⚠️ 智能分析：支出偏高，注意成本"
    assert render_card({"type": "unknown", "payload": {}}) is None


def test_need_amount_and_restocked() -> None:
    generator = ResponseGenerator()

    assert generator.need_amount("染发") == "收到，染发项目。请问收了多少钱呢？"
    assert generator.need_amount() == "好的，请问收了多少钱？"
    assert generator.restocked("洗发水", 5, 10, "瓶") == "已更新库存\n\n洗发水\n• 入库：+5瓶\n• 现有：10瓶"
