import os
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

load_dotenv()

# SQLite database file - stored in a 'data' folder for better Docker volume mounting
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/shop.db")

engine = create_engine(DATABASE_URL, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Stock a barbershop starts with on first run: (name, quantity, unit, alert_threshold)
SEED_INVENTORY = [
    ("洗发水", 5, "瓶", 3),
    ("护发素", 8, "瓶", 3),
    ("染发膏", 12, "盒", 5),
    ("烫发药水", 6, "套", 3),
]


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def seed_defaults(db):
    """Insert the default shop profile and starter inventory if the tables are empty."""
    from db.models import InventoryItem, ShopInfo

    if db.query(ShopInfo).first() is None:
        db.add(ShopInfo())
    if db.query(InventoryItem).count() == 0:
        for name, quantity, unit, threshold in SEED_INVENTORY:
            db.add(InventoryItem(name=name, quantity=quantity, unit=unit, alert_threshold=threshold))
    db.commit()


def init_db(bind=None):
    # Ensure data directory exists for file-backed SQLite
    bind = bind or engine
    if bind.url.get_backend_name() == "sqlite" and bind.url.database:
        folder = os.path.dirname(bind.url.database)
        if folder:
            os.makedirs(folder, exist_ok=True)

    import db.models  # noqa: F401  (register tables)
    Base.metadata.create_all(bind=bind)

    session = sessionmaker(bind=bind)()
    try:
        seed_defaults(session)
    finally:
        session.close()
