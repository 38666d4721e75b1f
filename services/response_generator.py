import random
from datetime import datetime
from services.intent_parser import PAYMENT_LABELS

TIME_LABELS = {
    "today": "今日",
    "week": "本周",
    "month": "本月",
    "year": "今年",
}

UNKNOWN_REPLIES = [
    '我没太理解。\n\n可以试试说：\n• "收了38块"\n• "今天收入多少"\n• "洗发水还剩几瓶"',
    '没听明白。\n\n你可以这样说：\n• "洗剪吹38"\n• "查一下本月收入"\n• "进货洗发水5瓶"',
    '我不确定怎么处理。\n\n试试告诉我：\n• 要记账：说金额和项目\n• 要查询：说查什么\n• 要帮助：说"帮助"',
]

HELP_TEXT = """我能帮你做这些事：

【记账】
• "收了一个洗剪吹38块"
• "老李烫头收了280"
• "买洗发水花了150"

【查账】
• "今天收入多少"
• "这个月赚了多少"
• "看看本周营业额"

【库存】
• "洗发水还剩多少"
• "查看库存"
• "进了5瓶洗发水"

【顾客】
• "老李上次来是什么时候"

直接说话就行，不用点按钮。"""


def fmt_money(value, thousands=False):
    """38.0 -> '38', 38.5 -> '38.5'."""
    value = round(float(value or 0), 2)
    if value == int(value):
        value = int(value)
    return f"{value:,}" if thousands else f"{value}"


class ResponseGenerator:
    """
    Natural-language reply templates for the rule-based paths.
    """

    def __init__(self, rng=None):
        self.rng = rng or random.Random()

    def income_recorded(self, tx, today_stats):
        parts = [f"好的，已记录收入 {fmt_money(tx.amount)}元"]

        if tx.category_label and tx.category_label not in ("其他服务", "服务", "服务收入"):
            parts.append(f"\n📋 服务项目：{tx.category_label}")
        if tx.customer_name:
            parts.append(f"\n👤 顾客：{tx.customer_name}")
        if tx.payment_method:
            parts.append(f"\n💳 支付方式：{PAYMENT_LABELS.get(tx.payment_method, tx.payment_method)}")

        parts.append(
            f"\n\n今日累计收入：{fmt_money(today_stats['total_income'])}元，"
            f"接待 {today_stats['customer_count']} 位顾客"
        )
        if today_stats["customer_count"] >= 5:
            parts.append("\n今天挺忙的，辛苦了。")
        return "".join(parts)

    def expense_recorded(self, amount, product_name=None, today_stats=None):
        parts = [f"已记录支出 {fmt_money(amount)}元"]
        if product_name:
            parts.append(f"\n商品：{product_name}")
        if today_stats:
            net = today_stats["total_income"] - today_stats["total_expense"]
            parts.append(f"\n\n今日净收入：{fmt_money(net)}元")
        return "".join(parts)

    def income_query(self, time_range, stats):
        parts = [f"{TIME_LABELS.get(time_range, '今日')}经营数据\n"]
        parts.append(f"总收入：{fmt_money(stats['total_income'], thousands=True)}元")
        parts.append(f"\n总支出：{fmt_money(stats['total_expense'], thousands=True)}元")
        parts.append(f"\n净利润：{fmt_money(stats['net_profit'], thousands=True)}元")

        if stats.get("customer_count") is not None:
            parts.append(f"\n接待顾客：{stats['customer_count']}人")
        if stats.get("top_service"):
            parts.append(f"\n热门项目：{stats['top_service']}")
        if stats.get("growth_rate") is not None:
            trend = "增长" if stats["growth_rate"] >= 0 else "下降"
            parts.append(f"\n环比{trend}：{abs(stats['growth_rate']):.1f}%")
        return "".join(parts)

    def inventory_query(self, items, product=None):
        if product:
            item = next((i for i in items if i.name == product), None)
            if item is None:
                return f"没有找到“{product}”的库存记录。\n\n需要我帮你添加这个商品吗？"

            response = f"{item.name}\n数量：{item.quantity}{item.unit}\n"
            response += f"状态：{'库存偏低' if item.is_low else '库存正常'}"
            if item.is_low:
                response += f"\n\n建议补货：低于{item.alert_threshold}{item.unit}"
            return response

        low = [i for i in items if i.is_low]
        normal = [i for i in items if not i.is_low]
        parts = ["当前库存\n"]
        if low:
            parts.append("需要补货：")
            parts.extend(f"\n• {i.name}：{i.quantity}{i.unit}" for i in low)
            parts.append("\n")
        if normal:
            parts.append("\n库存正常：")
            parts.extend(f"\n• {i.name}：{i.quantity}{i.unit}" for i in normal)
        return "".join(parts)

    def restocked(self, product, added, new_quantity, unit):
        response = f"已更新库存\n\n{product}\n"
        response += f"• 入库：+{added}{unit}\n"
        response += f"• 现有：{new_quantity}{unit}"
        return response

    def greeting(self, today_stats, now=None):
        hour = (now or datetime.now()).hour
        if hour < 12:
            greeting = "早上好"
        elif hour < 18:
            greeting = "下午好"
        else:
            greeting = "晚上好"

        response = f"{greeting} \n\n"
        if today_stats["total_income"] > 0:
            response += (
                f"今日已收入 {fmt_money(today_stats['total_income'])}元，"
                f"接待 {today_stats['customer_count']} 位顾客\n\n"
            )
        return response + "有什么需要帮忙的吗？"

    def help(self):
        return HELP_TEXT

    def unknown(self):
        return self.rng.choice(UNKNOWN_REPLIES)

    def need_amount(self, category=None):
        if category:
            return f"收到，{category}项目。请问收了多少钱呢？"
        return "好的，请问收了多少钱？"

    def customer_query(self, name, customer):
        if customer is None or not customer.visit_count:
            return f"还没有{name}的消费记录，下次{name}来了记得告诉我~"
        last = customer.last_visit.strftime("%m月%d日 %H:%M") if customer.last_visit else "未知"
        return (
            f"{customer.name}上次来是{last}，"
            f"一共来了{customer.visit_count}次，累计消费¥{fmt_money(customer.total_spent)}"
        )


def render_card(data):
    """Plain-text card for a ChatResponse data block, or None when there is nothing to show."""
    if not data:
        return None
    kind, payload = data.get("type"), data.get("payload") or {}

    if kind == "transaction":
        lines = [f"💰 +{fmt_money(payload.get('amount'))}元 · {payload.get('category_label') or '服务'}"]
        if payload.get("customer_name"):
            lines.append(f"顾客：{payload['customer_name']}")
        lines.append(f"支付：{PAYMENT_LABELS.get(payload.get('payment_method'), '现金')}")
        if "today_total" in payload:
            lines.append(f"今日累计 ¥{fmt_money(payload['today_total'])}")
        return "\n".join(lines)

    if kind == "query":
        lines = [
            f"📊 收入 ¥{fmt_money(payload.get('total_income'))}"
            f" | 支出 ¥{fmt_money(payload.get('total_expense'))}",
            f"笔数 {payload.get('transaction_count', 0)} | 顾客 {payload.get('customer_count', 0)}",
        ]
        if payload.get("top_service"):
            lines.append(f"热门：{payload['top_service']}")
        if payload.get("expense_just_added"):
            lines.append(f"刚记支出 ¥{fmt_money(payload['expense_just_added'])}")
        return "\n".join(lines)

    if kind == "chart":
        lines = [
            f"📈 {payload.get('period', '本月')}",
            f"收入 ¥{fmt_money(payload.get('total_income'), thousands=True)}"
            f" | 支出 ¥{fmt_money(payload.get('total_expense'), thousands=True)}",
            f"净利润 ¥{fmt_money(payload.get('net_profit'), thousands=True)} | 日均 ¥{fmt_money(payload.get('avg_daily'))}",
        ]
        if payload.get("growth_rate") is not None:
            lines.append(f"环比 {payload['growth_rate']:+.1f}%")
        return "\n".join(lines)

    if kind == "inventory":
        return "\n".join(
            f"{'⚠️' if item['low'] else '✅'} {item['name']} {item['quantity']}{item['unit']}"
            for item in payload
        ) or None

    if kind == "insight":
        icon = "💡" if payload.get("insight_type") == "good" else "⚠️"
        return f"{icon} {payload.get('title', '')}：{payload.get('content', '')}"

    return None


response_generator = ResponseGenerator()
