import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class Stock(Base):
    __tablename__ = "stock"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="ux_stock_product_location"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = Column(Uuid, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True)

    # Written only by core.ledger.apply_movement
    quantity = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    product = relationship("Product", back_populates="stocks")
    location = relationship("Location")
