import re
from dataclasses import dataclass, field
from typing import Optional


# keyword -> (category, label, default price)
SERVICE_MAP = {
    "剪发": ("haircut", "剪发", 25),
    "剪头": ("haircut", "剪发", 25),
    "理发": ("haircut", "剪发", 25),
    # 洗剪吹 must be checked before 洗剪
    "洗剪吹": ("wash_cut_blow", "洗剪吹", 38),
    "洗剪": ("wash_cut", "洗剪", 30),
    "烫发": ("perm", "烫发", 200),
    "烫头": ("perm", "烫发", 200),
    "染发": ("dye", "染发", 150),
    "染头": ("dye", "染发", 150),
    "护理": ("care", "护理", 80),
    "焗油": ("care", "焗油护理", 100),
}

PAYMENT_MAP = {
    "微信": "wechat",
    "支付宝": "alipay",
    "现金": "cash",
    "刷卡": "card",
    "银行卡": "card",
}

PAYMENT_LABELS = {
    "wechat": "微信",
    "alipay": "支付宝",
    "cash": "现金",
    "card": "刷卡",
}

TIME_KEYWORDS = {
    "today": ["今天", "今日", "当天"],
    "week": ["本周", "这周", "这个星期", "一周"],
    "month": ["本月", "这个月", "月", "这月"],
    "year": ["今年", "本年", "全年"],
}

PRODUCTS = ["洗发水", "护发素", "染发膏", "烫发药水", "发膜", "定型水", "发蜡", "梳子", "剪刀"]

INCOME_KEYWORDS = ["收", "进账", "入账", "来了", "结账", "付款", "成交"]
EXPENSE_KEYWORDS = ["花", "买", "进货", "采购", "支出", "付了", "开支"]
QUERY_INCOME_KEYWORDS = ["收入", "赚", "营收", "营业额", "流水", "多少钱", "收了多少", "进账"]
QUERY_WORDS = ["多少", "查", "看看", "统计", "报表", "怎么样"]
INVENTORY_KEYWORDS = ["库存", "还剩", "剩余", "有多少", "够不够", "还有"]
RESTOCK_KEYWORDS = ["进货", "补货", "进了", "采购了", "买了"]
CUSTOMER_QUERY_WORDS = ["上次", "什么时候", "来过", "多久"]
GREETING_KEYWORDS = ["你好", "在吗", "嗨", "hi", "hello", "早上好", "下午好", "晚上好"]
HELP_KEYWORDS = ["帮助", "怎么用", "怎么操作", "使用方法", "功能", "能做什么"]

_SURNAMES = (
    "李王张刘陈杨赵黄周吴徐孙胡朱高林何郭马罗梁宋郑谢韩唐冯于董萧程曹袁邓许傅沈曾彭吕苏卢蒋蔡贾丁魏薛叶阎余潘"
    "杜戴夏钟汪田任姜范方石姚谭廖邹熊金陆郝孔白崔康毛邱秦江史顾侯邵孟龙万段雷钱汤尹黎易常武乔贺赖龚文"
)

AMOUNT_PATTERNS = [
    re.compile(r"(\d+(?:\.\d{1,2})?)\s*[块元圆]"),
    re.compile(r"[¥￥]\s*(\d+(?:\.\d{1,2})?)"),
    re.compile(r"(\d+(?:\.\d{1,2})?)\s*(?:块钱|元钱)"),
    re.compile(r"收了?\s*(\d+(?:\.\d{1,2})?)"),
    re.compile(r"(\d+(?:\.\d{1,2})?)"),
]

CUSTOMER_PATTERNS = [
    re.compile(f"老[{_SURNAMES}]"),
    re.compile(f"[{_SURNAMES}](?:哥|姐|叔|婶|阿姨)"),
    re.compile(r"[A-Za-z\u4e00-\u9fa5]{1,4}?(?:先生|女士|小姐)"),
]

QUANTITY_PATTERN = re.compile(r"(\d+)\s*(?:瓶|盒|箱|套|个|把)")


@dataclass
class IntentResult:
    intent: str
    confidence: float
    entities: dict = field(default_factory=dict)


def _contains_any(text, keywords):
    return any(k in text for k in keywords)


class IntentParser:
    """
    Rule-based parser that turns a shop owner's chat line into an intent plus entities.
    """

    def parse_intent(self, text: str) -> IntentResult:
        normalized = text.lower().strip()

        if self.is_income_intent(normalized):
            return self._parse_income(normalized)
        if self.is_expense_intent(normalized):
            return self._parse_expense(normalized)
        if self.is_query_income_intent(normalized):
            return IntentResult("query_income", 0.85, {"time_range": self.extract_time_range(normalized)})
        if self.is_query_inventory_intent(normalized):
            return IntentResult("query_inventory", 0.85, {"product_name": self.extract_product_name(normalized)})
        if self.is_add_inventory_intent(normalized):
            return IntentResult("add_inventory", 0.85, {
                "amount": self.extract_amount(normalized),
                "product_name": self.extract_product_name(normalized),
                "quantity": self.extract_quantity(normalized),
            })
        if self.is_customer_query_intent(normalized):
            return IntentResult("query_customer", 0.8, {"customer_name": self.extract_customer_name(normalized)})
        if _contains_any(normalized, GREETING_KEYWORDS):
            return IntentResult("greeting", 0.9)
        if _contains_any(normalized, HELP_KEYWORDS):
            return IntentResult("help", 0.9)

        return IntentResult("unknown", 0.3)

    def is_income_intent(self, text):
        return _contains_any(text, INCOME_KEYWORDS) and self.extract_amount(text) is not None

    def is_expense_intent(self, text):
        return _contains_any(text, EXPENSE_KEYWORDS) and self.extract_amount(text) is not None

    def is_query_income_intent(self, text):
        if _contains_any(text, QUERY_INCOME_KEYWORDS):
            return True
        if "库存" in text or _contains_any(text, PRODUCTS):
            return False
        return _contains_any(text, QUERY_WORDS)

    def is_query_inventory_intent(self, text):
        if _contains_any(text, INVENTORY_KEYWORDS):
            return True
        return any(p in text and ("多少" in text or "剩" in text) for p in PRODUCTS[:5])

    def is_add_inventory_intent(self, text):
        return _contains_any(text, RESTOCK_KEYWORDS) and _contains_any(text, PRODUCTS[:4])

    def is_customer_query_intent(self, text):
        return _contains_any(text, CUSTOMER_QUERY_WORDS) and self.extract_customer_name(text) is not None

    def _parse_income(self, text):
        amount = self.extract_amount(text)
        category, _label = self.extract_service_category(text)
        return IntentResult("record_income", 0.9 if amount else 0.6, {
            "amount": amount or None,
            "category": category,
            "customer_name": self.extract_customer_name(text),
            "payment_method": self.extract_payment_method(text),
        })

    def _parse_expense(self, text):
        amount = self.extract_amount(text)
        return IntentResult("record_expense", 0.9 if amount else 0.6, {
            "amount": amount or None,
            "product_name": self.extract_product_name(text),
        })

    # --- entity extractors ---

    def extract_amount(self, text: str) -> Optional[float]:
        """Amount in formats like 38块, 38元, ¥38, 收了38 or a bare number."""
        for pattern in AMOUNT_PATTERNS:
            match = pattern.search(text)
            if match:
                return float(match.group(1))
        return None

    def extract_service_category(self, text):
        """Returns (category, label); falls back to ('other', '其他服务')."""
        for keyword, (category, label, _price) in SERVICE_MAP.items():
            if keyword in text:
                return category, label
        return "other", "其他服务"

    def extract_customer_name(self, text):
        # 老李 / 王姐 / 张先生
        for pattern in CUSTOMER_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(0)
        return None

    def extract_payment_method(self, text):
        for keyword, method in PAYMENT_MAP.items():
            if keyword in text:
                return method
        return None

    def extract_product_name(self, text):
        for product in PRODUCTS:
            if product in text:
                return product
        return None

    def extract_quantity(self, text):
        match = QUANTITY_PATTERN.search(text)
        if match:
            return int(match.group(1))
        return None

    def extract_time_range(self, text):
        for time_range, keywords in TIME_KEYWORDS.items():
            if _contains_any(text, keywords):
                return time_range
        return "today"

    def get_default_price(self, category):
        for cat, _label, price in SERVICE_MAP.values():
            if cat == category:
                return price
        return 0

    def get_category_label(self, category):
        for cat, label, _price in SERVICE_MAP.values():
            if cat == category:
                return label
        return "其他服务"
