import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


MOVEMENT_TYPES = ("RECEIPT", "SALE", "RETURN", "TRANSFER_IN", "TRANSFER_OUT", "ADJUSTMENT")


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = Column(Uuid, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True)

    change = Column(Integer, nullable=False)
    movement_type = Column(Text, nullable=False, index=True)
    reason = Column(Text, nullable=True)
    source_type = Column(Text, nullable=True)  # purchase_order|sale|transfer|manual
    source_id = Column(Uuid, nullable=True, index=True)
    transfer_id = Column(Uuid, nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_by_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    product = relationship("Product")
    location = relationship("Location")
