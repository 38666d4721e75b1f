from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
from db.database import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True)  # e.g. 老李, 王姐
    phone = Column(String, nullable=True)
    gender = Column(String, nullable=True)  # male, female
    total_spent = Column(Float, default=0.0)
    visit_count = Column(Integer, default=0)
    last_visit = Column(DateTime, nullable=True)
    preferences = Column(Text, nullable=True)
    birthday = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    transactions = relationship("Transaction", back_populates="customer")

    def __repr__(self):
        return f"<Customer(name='{self.name}', visits={self.visit_count}, spent={self.total_spent})>"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String, nullable=False)  # income, expense
    amount = Column(Float, nullable=False)
    category = Column(String, default="other")  # haircut, perm, dye, ... or expense
    category_label = Column(String)  # e.g. 剪发, 服务收入, 支出
    payment_method = Column(String, default="cash")  # wechat, alipay, cash, card
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    customer_name = Column(String, nullable=True)
    staff_name = Column(String, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now, index=True)

    customer = relationship("Customer", back_populates="transactions")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "amount": self.amount,
            "category": self.category,
            "category_label": self.category_label,
            "payment_method": self.payment_method,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "note": self.note,
            "created_at": self.created_at,
        }

    def __repr__(self):
        return f"<Transaction(id={self.id}, type='{self.type}', amount={self.amount}, category='{self.category}')>"


class InventoryItem(Base):
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, index=True)
    quantity = Column(Integer, default=0)
    unit = Column(String, default="瓶")
    alert_threshold = Column(Integer, default=3)
    supplier = Column(String, nullable=True)
    supplier_phone = Column(String, nullable=True)
    last_restock_date = Column(DateTime, nullable=True)
    price = Column(Float, nullable=True)

    @property
    def is_low(self):
        return self.quantity <= self.alert_threshold

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
            "alert_threshold": self.alert_threshold,
            "low": self.is_low,
        }

    def __repr__(self):
        return f"<InventoryItem(name='{self.name}', quantity={self.quantity}{self.unit})>"


class ShopInfo(Base):
    __tablename__ = "shop_info"

    id = Column(Integer, primary_key=True)
    name = Column(String, default="我的理发店")
    address = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    wechat_pay_enabled = Column(Boolean, default=True)
    alipay_enabled = Column(Boolean, default=True)
    voice_enabled = Column(Boolean, default=False)

    def __repr__(self):
        return f"<ShopInfo(name='{self.name}')>"


# Conversation memory
class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True)
    title = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    last_message_at = Column(DateTime, default=datetime.now)
    message_count = Column(Integer, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "last_message_at": self.last_message_at,
            "message_count": self.message_count,
        }


class ChatTurn(Base):
    __tablename__ = "chat_turns"

    id = Column(Integer, primary_key=True)
    session_id = Column(String, index=True)
    role = Column(String)  # user, assistant
    content = Column(Text)
    created_at = Column(DateTime, default=datetime.now)


class AppSetting(Base):
    __tablename__ = "app_settings"

    key = Column(String, primary_key=True)
    value = Column(Text)
