import uuid
from sqlalchemy import BigInteger, Column, Date, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship
from .database import Base, utcnow


PURCHASE_ORDER_STATUSES = ("DRAFT", "ORDERED", "PARTIALLY_RECEIVED", "RECEIVED", "CANCELLED")


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    reference = Column(String, nullable=False, unique=True, index=True)
    supplier_id = Column(Uuid, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False, index=True)
    location_id = Column(Uuid, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(Text, nullable=False, default="DRAFT", index=True)  # DRAFT|ORDERED|PARTIALLY_RECEIVED|RECEIVED|CANCELLED
    expected_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    currency = Column(Text, nullable=True)

    ordered_at = Column(DateTime, nullable=True)
    received_at = Column(DateTime, nullable=True)
    created_by_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    supplier = relationship("Supplier")
    location = relationship("Location")
    items = relationship("PurchaseOrderItem", back_populates="purchase_order", cascade="all, delete-orphan")


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    purchase_order_id = Column(Uuid, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)

    quantity_ordered = Column(Integer, nullable=False)
    quantity_received = Column(Integer, nullable=False, default=0)
    unit_cost_minor = Column(BigInteger, nullable=True)

    purchase_order = relationship("PurchaseOrder", back_populates="items")
    product = relationship("Product")
