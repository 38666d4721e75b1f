from __future__ import annotations

from services.ledger import Ledger

from main import SHOP_USAGE, apply_shop_change, format_shop


def test_shop_text_fields(session) -> None:
    ledger = Ledger(session)

    assert apply_shop_change(ledger, ["address", "幸福路", "8号"]) == "地址已更新为：幸福路 8号"
    assert apply_shop_change(ledger, ["phone", "13800000000"]) == "电话已更新为：13800000000"
    assert apply_shop_change(ledger, ["name", "阿强理发"]) == "店名已更新为：阿强理发"

    shop = ledger.get_shop_info()
    assert (shop.name, shop.address, shop.phone) == ("阿强理发", "幸福路 8号", "13800000000")


def test_shop_switches(session) -> None:
    ledger = Ledger(session)

    assert apply_shop_change(ledger, ["wechat", "off"]) == "微信收款已关闭"
    assert apply_shop_change(ledger, ["voice", "开启"]) == "语音已开启"
    assert apply_shop_change(ledger, ["alipay", "maybe"]) == SHOP_USAGE

    shop = ledger.get_shop_info()
    assert shop.wechat_pay_enabled is False
    assert shop.voice_enabled is True
    assert shop.alipay_enabled is True
    assert "微信收款：关闭" in format_shop(shop)


def test_bare_text_renames_shop(session) -> None:
    ledger = Ledger(session)

    assert apply_shop_change(ledger, ["老王", "理发店"]) == "店名已更新为：老王 理发店"
    assert apply_shop_change(ledger, ["phone"]) == SHOP_USAGE
