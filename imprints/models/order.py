# imprints/models/order.py
# Order and OrderItem models: print spec, amounts, statuses and reprint lineage.
import enum
import logging
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from sqlalchemy import Column, String, Integer, ForeignKey, Numeric, DateTime, Enum, JSON
from sqlalchemy.orm import relationship

from imprints.db.base import Base, new_id

logger = logging.getLogger(__name__)


class OrderStatus(str, enum.Enum):
    pending = "pending"
    payment_confirmed = "payment_confirmed"
    confirmed = "confirmed"
    printing = "printing"
    shipped = "shipped"
    delivered = "delivered"
    cancellation_requested = "cancellation_requested"
    cancelled = "cancelled"
    refunded = "refunded"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(Enum(OrderStatus), default=OrderStatus.pending, nullable=False)
    subtotal = Column(Numeric(10, 2), default=0, nullable=False)
    total_price = Column(Numeric(10, 2), default=0, nullable=False)
    shipping_address = Column(JSON, nullable=True)

    # Print spec
    design_id = Column(String(36), nullable=True)
    print_size = Column(String(50), nullable=True)
    material = Column(String(50), nullable=True)
    orientation = Column(String(20), nullable=True)
    preview_url = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("User")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payment = relationship("Payment", back_populates="order", uselist=False)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), nullable=True)
    variant_id = Column(String(36), nullable=True)
    design_id = Column(String(36), nullable=True)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    customization = Column(JSON, nullable=True)
    # "metadata" is reserved on declarative classes
    item_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="items")
    issue = relationship("Issue", back_populates="order_item", uselist=False)

    @property
    def lineage(self) -> "Lineage":
        return parse_lineage(self.item_metadata)


# Reprint lineage stored in OrderItem.metadata

class ReprintLineage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["reprint"] = "reprint"
    original_order_id: str = Field(alias="originalOrderId")
    original_item_id: str = Field(alias="originalItemId")
    issue_id: Optional[str] = Field(default=None, alias="issueId")

    def to_metadata(self, base: Optional[dict] = None) -> dict:
        """Merges the lineage into existing item metadata."""
        data = dict(base or {})
        data.update(self.model_dump(by_alias=True))
        data["isReprint"] = True
        return data


class NormalLineage(BaseModel):
    kind: Literal["normal"] = "normal"


Lineage = Annotated[Union[ReprintLineage, NormalLineage], Field(discriminator="kind")]

_lineage_adapter = TypeAdapter(Lineage)


def parse_lineage(metadata: Optional[dict]) -> Union[ReprintLineage, NormalLineage]:
    if not isinstance(metadata, dict) or not metadata.get("isReprint"):
        return NormalLineage()
    try:
        return _lineage_adapter.validate_python({**metadata, "kind": "reprint"})
    except ValidationError as e:
        logger.warning(f"Malformed reprint metadata {metadata!r}: {e}")
        return NormalLineage()
