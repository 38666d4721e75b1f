import re
import uuid
import random
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from db.models import AppSetting, ChatSession, ChatTurn
from services.ai_service import AIServiceError, parse_ai_response
from services.analyzer import FinanceAnalyzer
from services.intent_parser import IntentParser, PAYMENT_LABELS
from services.ledger import Ledger
from services.response_generator import ResponseGenerator, fmt_money

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20
CONTEXT_TURNS = 10
SESSION_LIMIT = 20
CURRENT_SESSION_KEY = "current_session_id"

SYSTEM_PROMPT = """你是"小账"，一家理发店的AI记账助手。性格：活泼热情、幽默风趣，像老朋友一样聊天。

## 回复格式（只返回JSON）
{"text":"回复内容，自然亲切，30-60字","tips":["建议1","建议2","建议3","建议4"]}

如果用户明确要记账或查数据，可以额外带上action字段：
- 记收入：{"action":"record_income","amount":38,"category":"haircut","note":"剪发","payment":"wechat","text":"..."}
- 记支出：{"action":"record_expense","amount":50,"note":"进货","text":"..."}
- 补货：{"action":"add_inventory","product":"洗发水","quantity":5,"text":"..."}
- 查询：query_today / query_month / query_inventory / analyze
category可选：haircut, wash_cut, wash_cut_blow, perm, dye, care, wash, other
payment可选：wechat, alipay, cash, card

## tips规则
每次tips都要不一样，混合三类：
- 业务：记一笔、看今日、查库存、分析下
- 生活：累不累、中午吃啥、讲个笑话、天气咋样
- 延伸：顺着刚才的话题自然往下聊
不要重复，要有创意。

## 回复风格
- 像朋友聊天，热情自然，可以开玩笑、关心对方
- 多用语气词：呀、啦、呢、哦

## 示例
用户：你好 → {"text":"嗨老板！今天店里生意咋样？有啥需要帮忙的尽管说~","tips":["记一笔","看今日","聊聊天","库存咋样"]}
用户：累死了 → {"text":"辛苦啦！开店不容易，今天业绩咋样？要不要看看今日账单？","tips":["看今日账","休息一下","明天目标","聊聊天"]}"""

# a whole number or up to two decimals, never starting inside another number
NUMBER = r"(?<![\d.])(\d+(?:\.\d{1,2})?)"
NUMBER_PATTERN = re.compile(NUMBER)

# amount and service word in either order
AMOUNT_PATTERNS = [
    re.compile(NUMBER + r"块?钱?.*?(剪发|剪头|理发)"),
    re.compile(NUMBER + r"块?钱?.*?(烫发|烫头)"),
    re.compile(NUMBER + r"块?钱?.*?(染发|染头)"),
    re.compile(NUMBER + r"块?钱?.*?(洗头|洗发)"),
    re.compile(NUMBER + r"块?钱?.*?(护理)"),
    re.compile(r"(剪发|剪头|理发).*?" + NUMBER),
    re.compile(r"(烫发|烫头).*?" + NUMBER),
    re.compile(r"(染发|染头).*?" + NUMBER),
    re.compile(r"(洗头|洗发).*?" + NUMBER),
    re.compile(r"收了?" + NUMBER),
    re.compile(r"来了?" + NUMBER),
    re.compile(r"进账" + NUMBER),
    re.compile(NUMBER + r"元"),
    re.compile(r"^" + NUMBER + r"$"),
]

SERVICE_WORDS = {
    "剪发": ("haircut", "剪发"),
    "剪头": ("haircut", "剪发"),
    "理发": ("haircut", "剪发"),
    "烫发": ("perm", "烫发"),
    "烫头": ("perm", "烫发"),
    "染发": ("dye", "染发"),
    "染头": ("dye", "染发"),
    "洗头": ("wash", "洗头"),
    "洗发": ("wash", "洗头"),
    "护理": ("care", "护理"),
}

MAX_AMOUNT = 100000

RESET_WORDS = ["账户清零", "清空账目", "删除数据", "重置账户", "全部清空", "数据清零"]
CLEAR_TX_WORDS = ["清空交易记录", "清空交易", "删除交易记录", "清空流水"]
CLEAR_CHAT_WORDS = ["清空聊天", "清除记录", "删除聊天"]
INVENTORY_WORDS = ["库存", "存货", "商品", "物料"]
MONTH_WORDS = ["本月", "这个月", "月收入", "月账"]
ANALYZE_WORDS = ["分析", "洞察", "建议", "情况怎么样"]
EXPENSE_WORDS = ["支出", "花了", "买了", "进货"]

FUN_POOL = [
    "讲个笑话", "今天运势咋样", "聊会天", "鼓励一下我",
    "最近累不累", "有啥开心事", "今天心情如何", "给点建议",
    "夸夸我", "说点有趣的", "陪我唠嗑", "今天忙不忙",
]
BIZ_POOL = [
    "记一笔", "看今日", "本月统计", "帮我分析",
    "查库存", "收支明细", "趋势分析", "经营建议",
]


@dataclass
class ChatResponse:
    message: str
    data: Optional[dict] = None
    suggestions: list = field(default_factory=list)


def _has(text, words):
    return any(w in text for w in words)


def _to_number(value):
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return number if number == number else 0  # NaN


class ChatAgent:
    """
    Turn-by-turn orchestrator. A message is tried, in order, against the local
    keyword intents, the amount heuristic, the remote LLM and finally the
    rule-based fallback.
    """

    def __init__(self, db: Session, ai_service=None, rng=None):
        self.db = db
        self.ai_service = ai_service
        self.rng = rng or random.Random()
        self.ledger = Ledger(db)
        self.analyzer = FinanceAnalyzer(db)
        self.parser = IntentParser()
        self.replies = ResponseGenerator(self.rng)
        self.history = []
        self.current_session_id = ""
        self._initialized = False

    @property
    def llm_enabled(self):
        return self.ai_service is not None

    # --- persistence ---

    def _get_setting(self, key):
        row = self.db.get(AppSetting, key)
        return row.value if row else None

    def _set_setting(self, key, value):
        row = self.db.get(AppSetting, key)
        if row is None:
            self.db.add(AppSetting(key=key, value=value))
        else:
            row.value = value
        self.db.commit()

    def _load_turns(self, session_id):
        turns = (
            self.db.query(ChatTurn)
            .filter(ChatTurn.session_id == session_id)
            .order_by(ChatTurn.id.desc())
            .limit(HISTORY_LIMIT)
            .all()
        )
        return [{"role": t.role, "content": t.content} for t in reversed(turns)]

    def initialize(self):
        if self._initialized:
            return

        session_id = self._get_setting(CURRENT_SESSION_KEY)
        if not session_id:
            session_id = uuid.uuid4().hex[:12]
            self._set_setting(CURRENT_SESSION_KEY, session_id)
        self.current_session_id = session_id
        self.history = self._load_turns(session_id)
        logger.info(f"Chat agent ready: session={session_id} history={len(self.history)}")
        self._initialized = True

    def _append_turn(self, role, content):
        self.history.append({"role": role, "content": content})
        self.history = self.history[-HISTORY_LIMIT:]
        self.db.add(ChatTurn(session_id=self.current_session_id, role=role, content=content))

    def _save_history(self):
        self.db.flush()
        stale = (
            self.db.query(ChatTurn.id)
            .filter(ChatTurn.session_id == self.current_session_id)
            .order_by(ChatTurn.id.desc())
            .offset(HISTORY_LIMIT)
            .all()
        )
        if stale:
            self.db.query(ChatTurn).filter(ChatTurn.id.in_([row.id for row in stale])).delete(synchronize_session=False)
        self.db.commit()

    def _remember(self, user_text, assistant_text):
        self._append_turn("user", user_text)
        self._append_turn("assistant", assistant_text)
        self._save_history()

    # --- main entry ---

    async def process_message(self, text, now=None) -> ChatResponse:
        self.initialize()
        now = now or datetime.now()
        trimmed = text.strip()
        lower = trimmed.lower()

        # 1. explicit business commands handled locally
        local = self.detect_local_intent(lower)
        if local:
            action, params = local
            logger.info(f"Local intent: {action}")
            result = self.execute_action(action, params, now)
            message, suggestions = self.generate_smart_reply(action, trimmed, now)
            self._remember(trimmed, message)
            return ChatResponse(message, result.data, suggestions)

        # 2. an amount alone is booked as income
        amount_match = self.extract_amount(trimmed)
        if amount_match:
            logger.info(f"Amount detected: {amount_match}")
            tx = self._record_income(
                amount_match["amount"],
                amount_match.get("category") or "other",
                amount_match.get("label") or "服务收入",
                trimmed,
                now,
            )
            today = self.analyzer.get_today_stats(now)
            message, suggestions = self.generate_smart_reply(
                "record_income", trimmed, now, amount=amount_match["amount"], today=today
            )
            self._remember(trimmed, message)
            return ChatResponse(message, self._transaction_card(tx, today), suggestions)

        # 3. everything else goes to the language model
        self._append_turn("user", trimmed)

        if self.llm_enabled:
            try:
                return await self._ask_llm(trimmed, now)
            except AIServiceError as e:
                logger.error(f"LLM error, using local fallback: {e}")

        self._save_history()
        return self.local_fallback(trimmed, now)

    async def _ask_llm(self, user_text, now):
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": self.build_context(now)},
        ]
        messages.extend({"role": h["role"], "content": h["content"]} for h in self.history[-CONTEXT_TURNS:])

        logger.info("Sending conversation to LLM")
        raw = await self.ai_service.chat(messages, temperature=0.7)
        parsed = parse_ai_response(raw)

        tips = parsed.get("tips")
        if isinstance(tips, list) and tips:
            suggestions = [str(t) for t in tips[:4]]
        else:
            suggestions = self.get_smart_suggestions(parsed.get("action"), now)

        if parsed.get("action"):
            result = self.execute_action(parsed["action"], parsed, now)
            response = ChatResponse(parsed.get("text") or result.message, result.data, suggestions)
        else:
            response = ChatResponse(parsed.get("text") or "好的~", None, suggestions)

        self._append_turn("assistant", response.message)
        self._save_history()
        return response

    def build_context(self, now):
        today = self.analyzer.get_today_stats(now)
        inventory = self.ledger.list_inventory()
        low = [i.name for i in inventory if i.is_low]
        shop = self.ledger.get_shop_info()
        low_text = f"，{'/'.join(low)}需补货" if low else ""
        return (
            f"[当前状态] {shop.name} {now.month}月{now.day}日 {now.hour}:{now.minute:02d}\n"
            f"今日收入¥{fmt_money(today['total_income'])} 支出¥{fmt_money(today['total_expense'])} "
            f"顾客{today['customer_count']}位\n"
            f"库存{len(inventory)}种商品{low_text}"
        )

    # --- local recognition ---

    def detect_local_intent(self, lower):
        """
        Keyword rules for unambiguous business commands. Returns (action, params) or None.
        """
        if _has(lower, RESET_WORDS):
            return "clear_all", {}
        if _has(lower, CLEAR_TX_WORDS):
            return "clear_transactions", {}
        if _has(lower, CLEAR_CHAT_WORDS):
            return "clear_chat", {}
        if _has(lower, INVENTORY_WORDS):
            return "query_inventory", {}
        if ("今" in lower and _has(lower, ["收入", "账", "营业", "进账"])) or _has(lower, ["今日账", "今天赚", "看今日"]):
            return "query_today", {}
        if _has(lower, MONTH_WORDS):
            return "query_month", {}
        if _has(lower, ANALYZE_WORDS):
            return "analyze", {}
        if _has(lower, EXPENSE_WORDS):
            match = NUMBER_PATTERN.search(lower)
            if match and float(match.group(1)) > 0:
                return "record_expense", {"amount": float(match.group(1)), "note": "支出"}
        if self.parser.is_customer_query_intent(lower):
            return "query_customer", {"customer_name": self.parser.extract_customer_name(lower)}
        return None

    def extract_amount(self, text):
        """
        Finds an income amount and optional service in free text, e.g. "38剪发",
        "烫头200", "收了50". Amounts outside (0, 100000) are ignored.
        """
        for pattern in AMOUNT_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue

            amount = 0
            service = None
            for group in match.groups():
                if group in SERVICE_WORDS:
                    service = SERVICE_WORDS[group]
                else:
                    amount = float(group)

            if 0 < amount < MAX_AMOUNT:
                return {
                    "amount": amount,
                    "category": service[0] if service else None,
                    "label": service[1] if service else None,
                }
        return None

    # --- actions ---

    def _record_income(self, amount, category, label, text, now, payment=None, customer_name=None):
        payment = payment if payment in PAYMENT_LABELS else self.parser.extract_payment_method(text) or "cash"
        customer_name = customer_name or self.parser.extract_customer_name(text)
        return self.ledger.add_transaction(
            "income", amount, category, label, payment,
            customer_name=customer_name, created_at=now,
        )

    def _transaction_card(self, tx, today):
        payload = tx.to_dict()
        payload.update(today_total=today["total_income"], customer_count=today["customer_count"])
        return {"type": "transaction", "payload": payload}

    def _inventory_card(self, items):
        return {"type": "inventory", "payload": [item.to_dict() for item in items]}

    def execute_action(self, action, params, now=None) -> ChatResponse:
        now = now or datetime.now()
        params = params or {}

        if action == "record_income":
            amount = _to_number(params.get("amount"))
            if amount <= 0:
                return ChatResponse("收了多少钱？", suggestions=["38元剪发", "68元烫发", "取消"])
            category = params.get("category") or "other"
            label = params.get("note") or (
                self.parser.get_category_label(category) if category != "other" else "服务"
            )
            tx = self._record_income(
                amount, category, label, "", now,
                payment=params.get("payment"), customer_name=params.get("customer_name"),
            )
            today = self.analyzer.get_today_stats(now)
            return ChatResponse(f"+{fmt_money(amount)}元", self._transaction_card(tx, today))

        if action == "record_expense":
            amount = _to_number(params.get("amount"))
            if amount <= 0:
                return ChatResponse("花了多少？", suggestions=["50元进货", "100元房租", "取消"])
            self.ledger.add_transaction(
                "expense", amount, "expense", params.get("note") or "支出", "cash", created_at=now,
            )
            today = self.analyzer.get_today_stats(now)
            return ChatResponse(
                f"-{fmt_money(amount)}元",
                {"type": "query", "payload": {**today, "expense_just_added": amount}},
            )

        if action == "query_today":
            return ChatResponse("今日数据", {"type": "query", "payload": self.analyzer.get_today_stats(now)})

        if action == "query_month":
            stats = self.analyzer.get_month_stats(now.year, now.month, now)
            avg_daily = round(stats["total_income"] / now.day) if now.day > 0 else 0
            payload = {**stats, "avg_daily": avg_daily, "days_in_month": now.day}
            return ChatResponse("本月统计", {"type": "chart", "payload": payload})

        if action == "query_inventory":
            inventory = self.ledger.list_inventory()
            if not inventory:
                return ChatResponse("还没有库存记录")
            low = [i for i in inventory if i.is_low]
            message = f"{len(low)}项需补货" if low else "库存充足"
            return ChatResponse(message, self._inventory_card(inventory))

        if action == "add_inventory":
            product = params.get("product") or params.get("product_name")
            if not product:
                return ChatResponse("什么商品？", suggestions=["洗发水", "染膏", "护发素"])
            quantity = int(_to_number(params.get("quantity"))) or 1
            item, created = self.ledger.restock(product, quantity, now)
            message = f"新增{product}" if created else f"{item.name}+{quantity}"
            return ChatResponse(message, self._inventory_card([item]))

        if action == "query_customer":
            name = params.get("customer_name") or ""
            customer = self.ledger.find_customer(name) if name else None
            return ChatResponse(self.replies.customer_query(name, customer))

        if action == "analyze":
            insight = self.analyzer.analyze(now)
            return ChatResponse(insight["content"], {"type": "insight", "payload": insight})

        if action == "clear_chat":
            self.clear_history()
            return ChatResponse(
                "聊天记录已清空，咱们重新开始聊吧~",
                {"type": "action", "payload": {"action": "clear_chat"}},
            )

        if action == "clear_all":
            self.ledger.clear_all_data()
            return ChatResponse(
                "账户已清零！所有交易记录都删除啦，从头开始记账吧，加油！",
                {"type": "action", "payload": {"action": "clear_all"}},
            )

        if action == "clear_transactions":
            self.ledger.clear_transactions()
            return ChatResponse(
                "交易记录已清空，库存和顾客资料都还在~",
                {"type": "action", "payload": {"action": "clear_transactions"}},
            )

        return ChatResponse("没太听懂，能再说一遍吗？")

    # --- replies & suggestions ---

    def generate_smart_reply(self, action, user_input, now, amount=None, today=None):
        """Returns (message, suggestions) for an action that has just run."""
        today = today or self.analyzer.get_today_stats(now)
        inventory = self.ledger.list_inventory()
        low = [i for i in inventory if i.is_low]

        if action == "query_inventory":
            if not inventory:
                return (
                    '库存还是空的呢~要不要添加一些商品？直接说"进了10瓶洗发水"我就帮你记上！',
                    ["添加洗发水", "添加染发膏", "记一笔收入", "聊点别的"],
                )
            items = "、".join(
                f"{i.name}{i.quantity}{i.unit}{'(需补货)' if i.is_low else ''}" for i in inventory
            )
            if low:
                tail = f"注意！{'、'.join(i.name for i in low)}库存偏低，该补货了！"
                return f"库存明细来啦：{items}。{tail}", ["补货洗发水", "今日收入", "帮我分析", "还有啥事"]
            return f"库存明细来啦：{items}。库存充足，放心营业~", ["记一笔", "今日收入", "分析经营", "聊会天"]

        if action == "query_today":
            if today["total_income"] == 0 and today["total_expense"] == 0:
                return (
                    "今天还没开张呢~加油加油，好运马上来！第一单记得告诉我哦~",
                    ["记一笔收入", "看看库存", "讲个笑话", "天气咋样"],
                )
            profit = today["total_income"] - today["total_expense"]
            if profit > 500:
                cheer = "今天业绩不错啊老板！"
            elif profit > 0:
                cheer = "稳扎稳打，继续加油~"
            else:
                cheer = "今天有点难，明天会更好！"
            message = (
                f"今日战报：收入¥{fmt_money(today['total_income'])}，支出¥{fmt_money(today['total_expense'])}，"
                f"净赚¥{fmt_money(profit)}，服务了{today['customer_count']}位顾客！{cheer}"
            )
            return message, ["继续记账", "本月总账", "帮我分析", "休息一下"]

        if action == "query_month":
            month = self.analyzer.get_month_stats(now.year, now.month, now)
            avg_daily = round(month["total_income"] / now.day) if now.day > 0 else 0
            if month["net_profit"] > 5000:
                cheer = "这个月赚麻了！"
            elif month["net_profit"] > 0:
                cheer = "稳步前进中~"
            else:
                cheer = "控制成本，下月加油！"
            message = (
                f"本月战报：收入¥{fmt_money(month['total_income'])}，支出¥{fmt_money(month['total_expense'])}，"
                f"净利润¥{fmt_money(month['net_profit'])}，日均¥{avg_daily}。{cheer}"
            )
            return message, ["看今日", "分析建议", "记一笔", "聊聊天"]

        if action == "record_income":
            cheer = "今天业绩火爆！" if today["total_income"] > 1000 else "继续加油，财源滚滚来~"
            message = (
                f"收到！+{fmt_money(amount or 0)}元已入账，今日累计收入¥{fmt_money(today['total_income'])}，"
                f"已服务{today['customer_count']}位顾客！{cheer}"
            )
            return message, ["再来一单", "今日总账", "看看库存", "休息一下"]

        if action == "record_expense":
            return (
                f"支出已记录！今日支出¥{fmt_money(today['total_expense'])}。精打细算，生意兴隆~",
                ["今日账单", "看收入", "分析一下", "聊会天"],
            )

        if action == "analyze":
            insight = ""
            if today["total_income"] > 0:
                per_customer = round(today["total_income"] / today["customer_count"]) if today["customer_count"] else 0
                insight = f"今日分析：客单价¥{per_customer}，"
                if per_customer > 50:
                    insight += "客单价不错！可以考虑推推会员卡~"
                else:
                    insight += "可以试试推荐护理项目提升客单价哦~"
            if low:
                insight += f"\n库存预警：{'、'.join(i.name for i in low)}该补货了！"
            if not insight:
                insight = "数据还不够多，多记几笔账我就能给你更准确的分析啦~"
            return insight, ["记一笔", "看库存", "今日账", "聊聊天"]

        if action == "query_customer":
            name = self.parser.extract_customer_name(user_input.lower()) or ""
            customer = self.ledger.find_customer(name) if name else None
            return self.replies.customer_query(name, customer), ["记一笔", "今日账", "看库存", "聊聊天"]

        if action == "clear_all":
            return (
                "账户已清零！所有数据都删掉了，咱们从零开始，一起加油！",
                ["记第一笔", "添加库存", "设置店铺", "聊会天"],
            )

        if action == "clear_transactions":
            return (
                "交易记录清空啦！库存和顾客资料都保留着，接着记账吧~",
                ["记第一笔", "看看库存", "今日账", "聊会天"],
            )

        if action == "clear_chat":
            return "聊天记录清空啦，有什么需要帮忙的随时说~", ["记一笔", "今日账", "看库存", "聊聊天"]

        return "好的~", self.get_smart_suggestions(None, now)

    def get_smart_suggestions(self, last_action=None, now=None):
        """
        Four quick-reply chips mixing follow-ups, shop state, time of day and small talk.
        """
        now = now or datetime.now()
        today = self.analyzer.get_today_stats(now)
        low = self.ledger.low_stock()
        hour = now.hour
        suggestions = []

        time_pool = []
        if 6 <= hour < 9:
            time_pool += ["早安", "今天加油", "新的一天开始啦"]
        elif 11 <= hour < 13:
            time_pool += ["午饭吃了吗", "中午歇会儿", "上午咋样"]
        elif 17 <= hour < 20:
            time_pool += ["今日结算", "准备下班", "晚上吃啥"]
        elif hour >= 21 or hour < 6:
            time_pool += ["早点休息", "晚安", "明天见"]

        # Saturday / Sunday
        if now.weekday() >= 5:
            time_pool += ["周末愉快", "今天人多吗"]

        if last_action == "record_income":
            suggestions.append(self.rng.choice(["继续记账", "再来一单", "下一位"]))
            suggestions.append(self.rng.choice(["今日汇总", "看看今天", "收了多少"]))
        elif last_action == "query_today":
            suggestions.append(self.rng.choice(["本月对比", "帮我分析", "详细数据"]))
        elif last_action == "query_month":
            suggestions.append(self.rng.choice(["环比上月", "看趋势", "哪天最好"]))
        elif last_action == "clear_chat":
            suggestions.append("重新开始")

        if today["total_income"] > 500:
            suggestions.append(self.rng.choice(
                [f"今日{fmt_money(today['total_income'])}不错", "生意兴隆", "继续加油"]
            ))
        elif today["customer_count"] > 0:
            suggestions.append(f"已服务{today['customer_count']}位")

        if low:
            suggestions.append(f"{low[0].name}要补货了")

        if time_pool and len(suggestions) < 3:
            suggestions.append(self.rng.choice(time_pool))

        while len(suggestions) < 3:
            candidates = [f for f in FUN_POOL if f not in suggestions]
            if not candidates:
                break
            suggestions.append(self.rng.choice(candidates))

        while len(suggestions) < 4:
            candidates = [b for b in BIZ_POOL if not any(b[:2] in s for s in suggestions)]
            if not candidates:
                break
            suggestions.append(self.rng.choice(candidates))

        self.rng.shuffle(suggestions)
        return suggestions[:4]

    def local_fallback(self, text, now):
        """Rule-based answer used when the LLM is disabled or failed."""
        lower = text.lower()
        match = NUMBER_PATTERN.search(text)
        amount = float(match.group(1)) if match else 0

        if amount > 0 and ("收" in lower or "入" in lower):
            category, label = self.parser.extract_service_category(lower)
            tx = self._record_income(amount, category, label if category != "other" else "服务", text, now)
            today = self.analyzer.get_today_stats(now)
            return ChatResponse(
                f"+{fmt_money(amount)}元",
                self._transaction_card(tx, today),
                self.get_smart_suggestions("record_income", now),
            )

        if "今" in lower and ("收" in lower or "多少" in lower):
            stats = self.analyzer.get_today_stats(now)
            return ChatResponse(
                "今日数据",
                {"type": "query", "payload": stats},
                self.get_smart_suggestions("query_today", now),
            )

        result = self.parser.parse_intent(text)
        entities = result.entities
        suggestions = self.get_smart_suggestions(None, now)

        if result.intent == "greeting":
            return ChatResponse(self.replies.greeting(self.analyzer.get_today_stats(now), now), None, suggestions)

        if result.intent == "help":
            return ChatResponse(self.replies.help(), None, suggestions)

        if result.intent == "record_income" and entities.get("amount"):
            category = entities.get("category") or "other"
            tx = self._record_income(
                entities["amount"], category, self.parser.get_category_label(category), text, now,
                payment=entities.get("payment_method"), customer_name=entities.get("customer_name"),
            )
            today = self.analyzer.get_today_stats(now)
            return ChatResponse(
                self.replies.income_recorded(tx, today),
                self._transaction_card(tx, today),
                self.get_smart_suggestions("record_income", now),
            )

        if result.intent == "record_income":
            category = entities.get("category") or "other"
            label = self.parser.get_category_label(category) if category != "other" else None
            return ChatResponse(self.replies.need_amount(label), None, ["38元剪发", "68元烫发", "取消"])

        if result.intent == "record_expense" and entities.get("amount"):
            product = entities.get("product_name")
            self.ledger.add_transaction(
                "expense", entities["amount"], "expense", product or "支出", "cash",
                note=product, created_at=now,
            )
            today = self.analyzer.get_today_stats(now)
            return ChatResponse(
                self.replies.expense_recorded(entities["amount"], product, today),
                {"type": "query", "payload": {**today, "expense_just_added": entities["amount"]}},
                suggestions,
            )

        if result.intent == "query_income":
            time_range = entities.get("time_range") or "today"
            stats = self.analyzer.get_period_stats(time_range, now)
            if time_range == "today":
                stats["top_service"] = self.analyzer.get_today_stats(now)["top_service"]
            elif time_range == "month":
                stats["growth_rate"] = self.analyzer.get_month_stats(now.year, now.month, now)["growth_rate"]
            return ChatResponse(
                self.replies.income_query(time_range, stats),
                {"type": "query", "payload": stats},
                suggestions,
            )

        if result.intent == "query_inventory":
            inventory = self.ledger.list_inventory()
            return ChatResponse(
                self.replies.inventory_query(inventory, entities.get("product_name")),
                self._inventory_card(inventory) if inventory else None,
                suggestions,
            )

        if result.intent == "add_inventory" and entities.get("product_name"):
            quantity = entities.get("quantity") or 1
            item, _created = self.ledger.restock(entities["product_name"], quantity, now)
            return ChatResponse(
                self.replies.restocked(item.name, quantity, item.quantity, item.unit),
                self._inventory_card([item]),
                suggestions,
            )

        if result.intent == "query_customer":
            name = entities.get("customer_name") or ""
            return ChatResponse(self.replies.customer_query(name, self.ledger.find_customer(name)), None, suggestions)

        # a service named without a price
        category, label = self.parser.extract_service_category(lower)
        if category != "other":
            return ChatResponse(self.replies.need_amount(label), None, ["38元剪发", "68元烫发", "取消"])

        return ChatResponse("试试点击下方按钮", None, suggestions)

    # --- history & sessions ---

    def clear_history(self):
        self.history = []
        self.db.query(ChatTurn).filter(ChatTurn.session_id == self.current_session_id).delete()
        self.db.commit()
        logger.info("Chat history cleared")

    def get_sessions(self):
        sessions = (
            self.db.query(ChatSession)
            .order_by(ChatSession.last_message_at.desc())
            .limit(SESSION_LIMIT)
            .all()
        )
        return [s.to_dict() for s in sessions]

    def save_session(self, title=None, now=None):
        self.initialize()
        now = now or datetime.now()
        session = self.db.get(ChatSession, self.current_session_id)
        if session is None:
            session = ChatSession(id=self.current_session_id, created_at=now)
            self.db.add(session)
        session.title = title or session.title or f"会话 {now:%Y/%m/%d}"
        session.last_message_at = now
        session.message_count = len(self.history)
        self.db.flush()

        # keep only the newest sessions
        expired = (
            self.db.query(ChatSession)
            .order_by(ChatSession.last_message_at.desc())
            .offset(SESSION_LIMIT)
            .all()
        )
        for old in expired:
            self.db.query(ChatTurn).filter(ChatTurn.session_id == old.id).delete()
            self.db.delete(old)
        self.db.commit()
        return session

    def load_session(self, session_id):
        self.initialize()
        if self.db.get(ChatSession, session_id) is None:
            return False
        self.current_session_id = session_id
        self.history = self._load_turns(session_id)
        self._set_setting(CURRENT_SESSION_KEY, session_id)
        return True

    def start_new_session(self, now=None):
        self.initialize()
        if self.history:
            self.save_session(now=now)

        self.history = []
        self.current_session_id = uuid.uuid4().hex[:12]
        self._set_setting(CURRENT_SESSION_KEY, self.current_session_id)
        logger.info(f"New chat session: {self.current_session_id}")
        return self.current_session_id

    def delete_session(self, session_id):
        self.initialize()
        session = self.db.get(ChatSession, session_id)
        if session is not None:
            self.db.delete(session)
        self.db.query(ChatTurn).filter(ChatTurn.session_id == session_id).delete()
        if session_id == self.current_session_id:
            self.history = []
        self.db.commit()
        return session is not None
