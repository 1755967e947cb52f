import uuid
from sqlalchemy import Boolean, Column, String, Text, Uuid
from .database import Base


class Location(Base):
    """A stock-holding place: warehouse, shop floor, back room."""
    __tablename__ = "locations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String, nullable=False, unique=True, index=True)  # upper-cased, e.g. 'WH-MAIN'
    name = Column(String, nullable=False)
    address = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "address": self.address,
            "is_active": bool(self.is_active),
        }
