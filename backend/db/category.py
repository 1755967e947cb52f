import uuid
from sqlalchemy import Column, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import relationship
from .database import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    parent_id = Column(Uuid, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)

    parent = relationship("Category", remote_side=[id])
    products = relationship("Product", back_populates="category")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parent_id": self.parent_id,
        }
