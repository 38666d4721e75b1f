from __future__ import annotations

import asyncio
import random

import pytest

from db.models import ChatTurn, InventoryItem, Transaction
from services.ai_service import AIServiceError
from services.chat_agent import ChatAgent

from conftest import NOW


def _agent(session, ai=None) -> ChatAgent:
    return ChatAgent(session, ai, rng=random.Random(7))


def _send(agent: ChatAgent, text: str):
    return asyncio.run(agent.process_message(text, now=NOW))


@pytest.mark.parametrize(
    "text, expected",
    [
        ("账户清零", ("clear_all", {})),
        ("清空聊天", ("clear_chat", {})),
        ("看看库存", ("query_inventory", {})),
        ("今天收入多少", ("query_today", {})),
        ("本月怎么样", ("query_month", {})),
        ("帮我分析一下", ("analyze", {})),
        ("花了50", ("record_expense", {"amount": 50, "note": "支出"})),
        ("老李上次来是什么时候", ("query_customer", {"customer_name": "老李"})),
        ("花了0", None),
        ("讲个笑话", None),
    ],
)
def test_detect_local_intent(session, text, expected) -> None:
    assert _agent(session).detect_local_intent(text) == expected


def test_extract_amount_finds_service_either_side(session) -> None:
    agent = _agent(session)

    assert agent.extract_amount("38剪发") == {"amount": 38, "category": "haircut", "label": "剪发"}
    assert agent.extract_amount("烫头200") == {"amount": 200, "category": "perm", "label": "烫发"}
    assert agent.extract_amount("收了50") == {"amount": 50, "category": None, "label": None}
    assert agent.extract_amount("200000") is None
    assert agent.extract_amount("讲个笑话") is None


def test_today_query_answers_locally(session) -> None:
    agent = _agent(session)

    response = _send(agent, "今天收入多少")

    assert response.message.startswith("今天还没开张呢")
    assert response.data["type"] == "query"
    assert response.suggestions == ["记一笔收入", "看看库存", "讲个笑话", "天气咋样"]
    assert session.query(ChatTurn).count() == 2


def test_bare_amount_is_booked_as_income(session) -> None:
    agent = _agent(session)

    response = _send(agent, "收了38块")

    tx = session.query(Transaction).one()
    assert tx.amount == 38
    assert tx.category_label == "服务收入"
    assert response.message == "收到！+38元已入账，今日累计收入¥38，已服务1位顾客！继续加油，财源滚滚来~"
    assert response.data["payload"]["today_total"] == 38


def test_amount_with_service_keeps_category(session) -> None:
    _send(_agent(session), "38块剪发")

    tx = session.query(Transaction).one()
    assert (tx.category, tx.category_label) == ("haircut", "剪发")


def test_out_of_range_amount_is_not_booked(session) -> None:
    response = _send(_agent(session), "200000")

    assert session.query(Transaction).count() == 0
    assert response.message == "试试点击下方按钮"


def test_expense_answers_locally(session) -> None:
    response = _send(_agent(session), "买了洗发水花了150")

    tx = session.query(Transaction).one()
    assert tx.type == "expense"
    assert response.message == "支出已记录！今日支出¥150。精打细算，生意兴隆~"
    assert response.data["payload"]["expense_just_added"] == 150


def test_llm_reply_with_tips(session, fake_ai) -> None:
    ai = fake_ai(replies=['{"text":"嗨老板！","tips":["记一笔","看今日","聊聊天","库存咋样","多余"]}'])
    agent = _agent(session, ai)

    response = _send(agent, "讲个笑话")

    assert response.message == "嗨老板！"
    assert response.suggestions == ["记一笔", "看今日", "聊聊天", "库存咋样"]
    messages, temperature = ai.calls[0]
    assert temperature == 0.7
    assert messages[0]["role"] == "system"
    assert messages[1]["content"].startswith("[当前状态] 我的理发店 10月14日 15:30")
    assert messages[-1] == {"role": "user", "content": "讲个笑话"}
    assert [turn["role"] for turn in agent.history] == ["user", "assistant"]


def test_llm_action_is_executed(session, fake_ai) -> None:
    ai = fake_ai(replies=['{"action":"record_income","amount":68,"category":"perm","note":"烫发","text":"记好啦"}'])

    response = _send(_agent(session, ai), "刚给人烫了个头")

    tx = session.query(Transaction).one()
    assert (tx.amount, tx.category, tx.category_label, tx.payment_method) == (68, "perm", "烫发", "cash")
    assert response.message == "记好啦"
    assert response.data["type"] == "transaction"
    assert len(response.suggestions) == 4


def test_llm_plain_text_reply(session, fake_ai) -> None:
    response = _send(_agent(session, fake_ai(replies=["今天天气不错"])), "天气咋样")

    assert response.message == "今天天气不错"
    assert response.data is None


def test_llm_failure_falls_back_to_rules(session, fake_ai) -> None:
    agent = _agent(session, fake_ai(error=AIServiceError("boom")))

    response = _send(agent, "你好")

    assert response.message.startswith("下午好")
    assert agent.history == [{"role": "user", "content": "你好"}]
    assert session.query(ChatTurn).count() == 1


def test_fallback_today_figures(session) -> None:
    response = _send(_agent(session), "今天收了多少")

    assert response.message == "今日数据"
    assert response.data["type"] == "query"


def test_fallback_inventory_question(session) -> None:
    response = _send(_agent(session), "洗发水还剩多少")

    assert response.message == "洗发水\n数量：5瓶\n状态：库存正常"
    assert response.data["type"] == "inventory"


def test_fallback_restock(session) -> None:
    response = _send(_agent(session), "进了5瓶洗发水")

    shampoo = session.query(InventoryItem).filter(InventoryItem.name == "洗发水").one()
    assert shampoo.quantity == 10
    assert "• 现有：10瓶" in response.message


def test_fallback_help(session) -> None:
    response = _send(_agent(session), "你能做什么")

    assert response.message.startswith("我能帮你做这些事")
    assert len(response.suggestions) == 4


def test_customer_history(session) -> None:
    agent = _agent(session)
    _send(agent, "老李烫头收了280")

    response = _send(agent, "老李上次来是什么时候")

    assert response.message == "老李上次来是10月14日 15:30，一共来了1次，累计消费¥280"


def test_smart_suggestions_are_four_distinct_chips(session) -> None:
    suggestions = _agent(session).get_smart_suggestions("record_income", NOW)

    assert len(suggestions) == 4
    assert len(set(suggestions)) == 4


def test_clear_chat_and_clear_all(session) -> None:
    agent = _agent(session)
    _send(agent, "收了38块")
    _send(agent, "今天收入多少")

    _send(agent, "清空聊天")
    assert len(agent.history) == 2
    assert session.query(ChatTurn).count() == 2

    response = _send(agent, "账户清零")
    assert response.data == {"type": "action", "payload": {"action": "clear_all"}}
    assert session.query(Transaction).count() == 0
    assert session.query(InventoryItem).count() == 4


def test_history_is_capped(session) -> None:
    agent = _agent(session)
    for _ in range(11):
        _send(agent, "今天收入多少")

    assert len(agent.history) == 20
    assert session.query(ChatTurn).count() == 20


def test_history_survives_a_new_agent(session) -> None:
    first = _agent(session)
    _send(first, "今天收入多少")

    second = _agent(session)
    second.initialize()

    assert second.current_session_id == first.current_session_id
    assert second.history == first.history


def test_sessions_lifecycle(session) -> None:
    agent = _agent(session)
    _send(agent, "今天收入多少")
    old_id = agent.current_session_id

    new_id = agent.start_new_session(now=NOW)

    assert new_id != old_id
    assert agent.history == []
    saved = agent.get_sessions()
    assert [(s["id"], s["title"], s["message_count"]) for s in saved] == [(old_id, "会话 2026/10/14", 2)]

    assert agent.load_session("missing") is False
    assert agent.load_session(old_id) is True
    assert len(agent.history) == 2

    assert agent.delete_session(old_id) is True
    assert agent.history == []
    assert agent.get_sessions() == []
    assert agent.delete_session(old_id) is False


@pytest.mark.parametrize("text, amount", [("38.5元", 38.5), ("收了38.5", 38.5), ("洗头12.5", 12.5)])
def test_decimal_amounts_are_booked_whole(session, text, amount) -> None:
    response = _send(_agent(session), text)

    assert session.query(Transaction).one().amount == amount
    assert response.data["payload"]["amount"] == amount


def test_amount_never_starts_inside_a_number(session) -> None:
    agent = _agent(session)

    assert agent.extract_amount("38.567元") is None
    assert agent.detect_local_intent("花了12.5") == ("record_expense", {"amount": 12.5, "note": "支出"})


def test_clear_transactions_keeps_inventory_and_customers(session) -> None:
    agent = _agent(session)
    _send(agent, "老李烫头收了280")

    response = _send(agent, "清空交易记录")

    assert response.data == {"type": "action", "payload": {"action": "clear_transactions"}}
    assert response.message.startswith("交易记录清空啦")
    assert session.query(Transaction).count() == 0
    assert agent.ledger.find_customer("老李") is not None
    assert session.query(InventoryItem).count() == 4


def test_fallback_asks_for_missing_amount(session) -> None:
    agent = _agent(session)

    assert _send(agent, "刚给老李烫发").message == "收到，烫发项目。请问收了多少钱呢？"
    assert _send(agent, "收了0块").message == "好的，请问收了多少钱？"
    assert session.query(Transaction).count() == 0
