import logging
from datetime import datetime
from sqlalchemy.orm import Session
from db.models import Transaction, InventoryItem, Customer, ShopInfo

logger = logging.getLogger(__name__)

DEFAULT_UNIT = "瓶"
DEFAULT_ALERT_THRESHOLD = 3


class Ledger:
    """
    Shop book: transactions, inventory, customers and the shop profile.
    Every mutating call commits immediately.
    """

    def __init__(self, db: Session):
        self.db = db

    # --- Transactions ---

    def add_transaction(self, type, amount, category="other", category_label=None,
                        payment_method="cash", customer_name=None, staff_name=None,
                        note=None, created_at=None):
        tx = Transaction(
            type=type,
            amount=float(amount),
            category=category or "other",
            category_label=category_label or ("服务" if type == "income" else "支出"),
            payment_method=payment_method or "cash",
            customer_name=customer_name,
            staff_name=staff_name,
            note=note,
            created_at=created_at or datetime.now(),
        )

        if customer_name:
            customer = self._touch_customer(customer_name, tx)
            tx.customer = customer

        self.db.add(tx)
        self.db.commit()
        logger.info(f"Recorded {type} {tx.amount} ({tx.category_label})")
        return tx

    def _touch_customer(self, name, tx):
        customer = self.find_customer(name)
        if customer is None:
            customer = Customer(name=name, total_spent=0.0, visit_count=0)
            self.db.add(customer)
        customer.visit_count = (customer.visit_count or 0) + 1
        customer.last_visit = tx.created_at
        if tx.type == "income":
            customer.total_spent = (customer.total_spent or 0.0) + tx.amount
        return customer

    def delete_transaction(self, tx_id):
        tx = self.db.get(Transaction, tx_id)
        if tx is None:
            return False
        self.db.delete(tx)
        self.db.commit()
        return True

    def clear_transactions(self):
        self.db.query(Transaction).delete()
        self.db.commit()

    def list_transactions(self, since=None, until=None):
        query = self.db.query(Transaction)
        if since is not None:
            query = query.filter(Transaction.created_at >= since)
        if until is not None:
            query = query.filter(Transaction.created_at < until)
        return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()

    # --- Inventory ---

    def list_inventory(self):
        return self.db.query(InventoryItem).order_by(InventoryItem.id).all()

    def low_stock(self):
        return [item for item in self.list_inventory() if item.is_low]

    def find_inventory(self, name):
        """First item whose name contains the given product name."""
        for item in self.list_inventory():
            if name in item.name:
                return item
        return None

    def add_inventory_item(self, name, quantity=0, unit=DEFAULT_UNIT,
                           alert_threshold=DEFAULT_ALERT_THRESHOLD, **extra):
        item = InventoryItem(name=name, quantity=quantity, unit=unit,
                             alert_threshold=alert_threshold, **extra)
        self.db.add(item)
        self.db.commit()
        return item

    def update_inventory_item(self, item_id, **changes):
        item = self.db.get(InventoryItem, item_id)
        if item is None:
            return None
        for key, value in changes.items():
            setattr(item, key, value)
        self.db.commit()
        return item

    def restock(self, product, quantity=1, now=None):
        """
        Add stock to the matching item, or create it. Returns (item, created).
        """
        now = now or datetime.now()
        existing = self.find_inventory(product)
        if existing:
            existing.quantity += quantity
            existing.last_restock_date = now
            self.db.commit()
            return existing, False

        item = self.add_inventory_item(product, quantity=quantity, last_restock_date=now)
        return item, True

    def delete_inventory_item(self, item_id):
        item = self.db.get(InventoryItem, item_id)
        if item is None:
            return False
        self.db.delete(item)
        self.db.commit()
        return True

    def clear_inventory(self):
        self.db.query(InventoryItem).delete()
        self.db.commit()

    # --- Customers ---

    def find_customer(self, name):
        return self.db.query(Customer).filter(Customer.name == name).first()

    def add_customer(self, name, **extra):
        customer = Customer(name=name, total_spent=0.0, visit_count=0, **extra)
        self.db.add(customer)
        self.db.commit()
        return customer

    def update_customer(self, customer_id, **changes):
        customer = self.db.get(Customer, customer_id)
        if customer is None:
            return None
        for key, value in changes.items():
            setattr(customer, key, value)
        self.db.commit()
        return customer

    def clear_customers(self):
        self.db.query(Transaction).update({Transaction.customer_id: None})
        self.db.query(Customer).delete()
        self.db.commit()

    # --- Shop ---

    def get_shop_info(self):
        shop = self.db.query(ShopInfo).first()
        if shop is None:
            shop = ShopInfo()
            self.db.add(shop)
            self.db.commit()
        return shop

    def set_shop_info(self, **changes):
        shop = self.get_shop_info()
        for key, value in changes.items():
            setattr(shop, key, value)
        self.db.commit()
        return shop

    def clear_all_data(self):
        """Account reset: drops transactions and customers, keeps inventory and shop profile."""
        self.db.query(Transaction).delete()
        self.db.query(Customer).delete()
        self.db.commit()
        logger.warning("Account reset: all transactions and customers deleted")
