from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from app.db.base import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # owner / seller
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default="active")  # draft / active / archived
    thumbnail_url = Column(String, nullable=True)
    # Default affiliate share in percent, used at checkout time
    affiliate_commission = Column(Integer, nullable=False, default=20)
    sales_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class ProductModule(Base):
    """
    Deliverable content of a product. Stored as one row per module; the `type`
    column discriminates which fields are meaningful (see app.schemas.modules).
    """

    __tablename__ = "product_modules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)  # file / link / text / embed
    title = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    # file
    file_url = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    # link
    url = Column(String, nullable=True)
    url_label = Column(String, nullable=True)
    # text
    content = Column(Text, nullable=True)
    # embed
    embed_url = Column(String, nullable=True)
    provider = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
