import logging
import os
from datetime import datetime
from dotenv import load_dotenv
from telegram import Update, ReplyKeyboardMarkup, ReplyKeyboardRemove
from telegram.ext import Application, CommandHandler, MessageHandler, filters, ContextTypes
from db.database import init_db, get_db
from services.ai_service import AIService
from services.analyzer import FinanceAnalyzer
from services.chat_agent import ChatAgent
from services.ledger import Ledger
from services.response_generator import response_generator, render_card, fmt_money

# Load environment variables
load_dotenv()

# Configuration
TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
ALLOWED_USER_ID = int(os.getenv("ALLOWED_USER_ID", "0"))

# Logging setup
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
)
logger = logging.getLogger(__name__)

ai_service = None

TIME_RANGES = ("today", "week", "month")

SHOP_TEXT_FIELDS = ("name", "address", "phone")
SHOP_SWITCHES = {
    "wechat": "wechat_pay_enabled",
    "alipay": "alipay_enabled",
    "voice": "voice_enabled",
}
SHOP_LABELS = {
    "name": "店名",
    "address": "地址",
    "phone": "电话",
    "wechat": "微信收款",
    "alipay": "支付宝收款",
    "voice": "语音",
}
SWITCH_ON = ("on", "开", "开启", "1", "true")
SWITCH_OFF = ("off", "关", "关闭", "0", "false")
SHOP_USAGE = (
    "用法：\n"
    "/shop name <店名>\n"
    "/shop address <地址>\n"
    "/shop phone <电话>\n"
    "/shop wechat|alipay|voice on|off"
)


def is_allowed(update: Update) -> bool:
    user = update.effective_user
    if user is None or user.id != ALLOWED_USER_ID:
        logger.warning(f"Unauthorized access attempt from user_id: {user.id if user else None} (Expected: {ALLOWED_USER_ID})")
        return False
    return True


def suggestion_keyboard(suggestions):
    if not suggestions:
        return ReplyKeyboardRemove()
    rows = [suggestions[i:i + 2] for i in range(0, len(suggestions), 2)]
    return ReplyKeyboardMarkup(rows, one_time_keyboard=True, resize_keyboard=True)


def format_response(response):
    """Chat reply text followed by its data card, if any."""
    card = render_card(response.data)
    if card:
        return f"{response.message}\n\n{card}"
    return response.message


async def reply(update: Update, response) -> None:
    await update.message.reply_text(
        format_response(response),
        reply_markup=suggestion_keyboard(response.suggestions),
    )


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Send a welcome message when the command /start is issued."""
    if not is_allowed(update): return

    db = next(get_db())
    shop = Ledger(db).get_shop_info()
    await update.message.reply_text(
        f"嗨！我是小账，{shop.name}的AI记账助手 🤖\n"
        f"直接跟我说“收了38块”“买洗发水花了150”，我就帮你记上。",
        reply_markup=suggestion_keyboard(["记一笔", "今日收入", "查库存", "帮我分析"]),
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Send a message when the command /help is issued."""
    if not is_allowed(update): return
    await update.message.reply_text(
        response_generator.help() + "\n\n"
        "命令：\n"
        "/today - 今日数据\n"
        "/month - 本月统计\n"
        "/stats [today|week|month] - 数据看板\n"
        "/stock - 库存\n"
        "/analyze - 智能分析\n"
        "/report - AI月度经营报告\n"
        "/shop [字段 值] - 查看/修改店铺信息\n"
        "/cleartx - 清空交易记录（保留库存和顾客）\n"
        "/new - 开始新对话\n"
        "/sessions - 历史对话\n"
        "/load <id> - 切换到历史对话\n"
        "/delete <id> - 删除历史对话\n"
        "/clearchat - 清空聊天记录"
    )


async def run_action(update: Update, action: str) -> None:
    """Run one chat action directly, the same way a matching message would."""
    if not is_allowed(update): return

    try:
        db = next(get_db())
        agent = ChatAgent(db, ai_service)
        agent.initialize()
        result = agent.execute_action(action, {})
        message, suggestions = agent.generate_smart_reply(action, "", datetime.now())
        result.message = message
        result.suggestions = suggestions
        await reply(update, result)
    except Exception as e:
        logger.error(f"Error running {action}: {e}")
        await update.message.reply_text(f"Error: {str(e)}")


async def today_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await run_action(update, "query_today")


async def month_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await run_action(update, "query_month")


async def stock_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await run_action(update, "query_inventory")


async def analyze_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await run_action(update, "analyze")


async def clear_chat_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await run_action(update, "clear_chat")


async def stats_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Dashboard figures and insights for today, the last 7 days or this month."""
    if not is_allowed(update): return

    time_range = context.args[0] if context.args and context.args[0] in TIME_RANGES else "today"
    db = next(get_db())
    analyzer = FinanceAnalyzer(db)
    stats = analyzer.get_period_stats(time_range)
    insights = analyzer.get_dashboard_insights(time_range)

    lines = [
        response_generator.income_query(time_range, stats),
        "",
    ]
    for insight in insights:
        icon = "⚠️" if insight["type"] == "warning" else "💡"
        lines.append(f"{icon} {insight['title']}：{insight['content']}")

    await update.message.reply_text("\n".join(lines))


async def handle_report(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Generates a monthly business report with AI advice."""
    if not is_allowed(update): return

    status_msg = await update.message.reply_text("正在算账... 📊")
    await context.bot.send_chat_action(chat_id=update.effective_chat.id, action="typing")

    try:
        db = next(get_db())
        analyzer = FinanceAnalyzer(db)

        # 1. Get Stats
        stats = analyzer.get_month_stats()
        summary_text = analyzer.format_summary_text(stats)

        if stats['total_income'] == 0 and stats['total_expense'] == 0:
            await status_msg.edit_text("这个月还没有记账数据，先记几笔吧！")
            return

        # 2. Get AI Analysis, or the rule-based one when no model is configured
        if ai_service is not None:
            analysis = await ai_service.get_business_advice(summary_text)
        else:
            analysis = analyzer.analyze()["content"]

        growth = stats["growth_rate"]
        final_reply = (
            f"📊 月度报告：{stats['period']}\n\n"
            f"💰 收入：{fmt_money(stats['total_income'], thousands=True)}\n"
            f"💸 支出：{fmt_money(stats['total_expense'], thousands=True)}\n"
            f"📉 日均收入：{fmt_money(stats['avg_daily_income'])}\n"
            f"🏦 净利润：{fmt_money(stats['net_profit'], thousands=True)}\n"
            f"📈 环比：{'N/A' if growth is None else f'{growth:+.1f}%'}\n\n"
            f"🧠 经营分析：\n"
            f"{analysis}"
        )

        await status_msg.edit_text(final_reply)

    except Exception as e:
        logger.error(f"Error generating report: {e}")
        await status_msg.edit_text(f"Error: {str(e)}")


def format_shop(shop):
    return (
        f"🏪 {shop.name}\n"
        f"地址：{shop.address or '未设置'}\n"
        f"电话：{shop.phone or '未设置'}\n"
        f"微信收款：{'开启' if shop.wechat_pay_enabled else '关闭'} | "
        f"支付宝收款：{'开启' if shop.alipay_enabled else '关闭'} | "
        f"语音：{'开启' if shop.voice_enabled else '关闭'}"
    )


def apply_shop_change(ledger, args):
    """
    /shop <field> <value> for name/address/phone, /shop <switch> on|off for
    wechat/alipay/voice. A bare /shop <text> renames the shop.
    """
    field_name, value = args[0].lower(), " ".join(args[1:]).strip()

    if field_name in SHOP_SWITCHES:
        if value.lower() in SWITCH_ON:
            enabled = True
        elif value.lower() in SWITCH_OFF:
            enabled = False
        else:
            return SHOP_USAGE
        ledger.set_shop_info(**{SHOP_SWITCHES[field_name]: enabled})
        return f"{SHOP_LABELS[field_name]}已{'开启' if enabled else '关闭'}"

    if field_name in SHOP_TEXT_FIELDS:
        if not value:
            return SHOP_USAGE
        ledger.set_shop_info(**{field_name: value})
        return f"{SHOP_LABELS[field_name]}已更新为：{value}"

    shop = ledger.set_shop_info(name=" ".join(args))
    return f"店名已更新为：{shop.name}"


async def shop_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not is_allowed(update): return

    ledger = Ledger(next(get_db()))
    if context.args:
        await update.message.reply_text(apply_shop_change(ledger, context.args))
        return

    await update.message.reply_text(format_shop(ledger.get_shop_info()) + "\n\n" + SHOP_USAGE)


async def clear_transactions_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await run_action(update, "clear_transactions")


async def new_session_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not is_allowed(update): return

    agent = ChatAgent(next(get_db()), ai_service)
    session_id = agent.start_new_session()
    await update.message.reply_text(f"已开始新对话（{session_id}），有什么需要帮忙的随时说~")


async def sessions_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not is_allowed(update): return

    agent = ChatAgent(next(get_db()), ai_service)
    agent.initialize()
    sessions = agent.get_sessions()
    if not sessions:
        await update.message.reply_text("还没有保存的对话。用 /new 开始新对话时会自动保存当前对话。")
        return

    lines = ["历史对话："]
    for s in sessions:
        marker = "👉 " if s["id"] == agent.current_session_id else ""
        lines.append(f"{marker}{s['id']} · {s['title']} · {s['message_count']}条")
    await update.message.reply_text("\n".join(lines))


async def load_session_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not is_allowed(update): return
    if not context.args:
        await update.message.reply_text("用法：/load <对话id>")
        return

    agent = ChatAgent(next(get_db()), ai_service)
    if agent.load_session(context.args[0]):
        await update.message.reply_text(f"已切换到对话 {context.args[0]}（{len(agent.history)}条记录）")
    else:
        await update.message.reply_text("没找到这个对话")


async def delete_session_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not is_allowed(update): return
    if not context.args:
        await update.message.reply_text("用法：/delete <对话id>")
        return

    agent = ChatAgent(next(get_db()), ai_service)
    if agent.delete_session(context.args[0]):
        await update.message.reply_text("对话已删除")
    else:
        await update.message.reply_text("没找到这个对话")


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Every free-text message goes through the chat agent."""
    if not is_allowed(update): return

    text = update.message.text
    await context.bot.send_chat_action(chat_id=update.effective_chat.id, action="typing")

    try:
        db = next(get_db())
        agent = ChatAgent(db, ai_service)
        response = await agent.process_message(text)
        await reply(update, response)

    except Exception as e:
        logger.error(f"Error processing message: {e}")
        await update.message.reply_text(f"Error: {str(e)}")


def main() -> None:
    """Start the bot."""
    global ai_service

    # Initialize DB
    init_db()

    # Initialize AI; without a key the agent answers from local rules only
    try:
        ai_service = AIService()
    except Exception as e:
        logger.warning(f"LLM disabled: {e}")
        ai_service = None

    # Create the Application
    if not TOKEN:
        logger.error("TELEGRAM_BOT_TOKEN not found!")
        return

    application = Application.builder().token(TOKEN).build()

    # Add handlers
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("today", today_command))
    application.add_handler(CommandHandler("month", month_command))
    application.add_handler(CommandHandler("stats", stats_command))
    application.add_handler(CommandHandler("stock", stock_command))
    application.add_handler(CommandHandler("analyze", analyze_command))
    application.add_handler(CommandHandler("report", handle_report))
    application.add_handler(CommandHandler("shop", shop_command))
    application.add_handler(CommandHandler("new", new_session_command))
    application.add_handler(CommandHandler("sessions", sessions_command))
    application.add_handler(CommandHandler("load", load_session_command))
    application.add_handler(CommandHandler("delete", delete_session_command))
    application.add_handler(CommandHandler("clearchat", clear_chat_command))
    application.add_handler(CommandHandler("cleartx", clear_transactions_command))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    # Run the bot
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
