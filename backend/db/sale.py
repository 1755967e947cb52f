import uuid
from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship
from .database import Base, utcnow


SALE_STATUSES = ("DRAFT", "COMPLETED", "CANCELLED", "REFUNDED")


class Sale(Base):
    __tablename__ = "sales"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    reference = Column(String, nullable=False, unique=True, index=True)
    location_id = Column(Uuid, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True)
    customer_name = Column(String, nullable=True)
    status = Column(Text, nullable=False, default="DRAFT", index=True)  # DRAFT|COMPLETED|CANCELLED|REFUNDED
    currency = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    completed_at = Column(DateTime, nullable=True, index=True)
    created_by_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    location = relationship("Location")
    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan")

    @property
    def total_minor(self) -> int:
        return sum(int(it.quantity) * int(it.unit_price_minor or 0) for it in (self.items or []))


class SaleItem(Base):
    __tablename__ = "sale_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sale_id = Column(Uuid, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    unit_price_minor = Column(BigInteger, nullable=True)

    sale = relationship("Sale", back_populates="items")
    product = relationship("Product")
