import uuid
from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship
from .database import Base, utcnow


class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sku = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)

    category_id = Column(Uuid, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    supplier_id = Column(Uuid, ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)

    unit = Column(Text, nullable=False, default="pcs")
    # Minor units (cents)
    cost_price_minor = Column(BigInteger, nullable=True)
    sale_price_minor = Column(BigInteger, nullable=True)
    currency = Column(Text, nullable=True)

    # Used when a stock row has no reorder_level of its own
    default_reorder_level = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    category = relationship("Category", back_populates="products")
    supplier = relationship("Supplier", back_populates="products")
    barcodes = relationship("Barcode", back_populates="product", cascade="all, delete-orphan")
    stocks = relationship("Stock", back_populates="product")


class Barcode(Base):
    __tablename__ = "barcodes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String, nullable=False, unique=True, index=True)
    symbology = Column(Text, nullable=False, default="CODE128")  # EAN13|UPCA|CODE128|QR

    product = relationship("Product", back_populates="barcodes")
