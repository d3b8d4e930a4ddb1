# imprints/models/issue.py
# Issue and IssueMessage models: customer-reported problems with an order item
# and the threaded conversation that records every decision.
import enum
from datetime import datetime

from sqlalchemy import Column, String, Text, Boolean, ForeignKey, Numeric, DateTime, Enum, JSON
from sqlalchemy.orm import relationship

from imprints.db.base import Base, new_id


class IssueStatus(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    AWAITING_REVIEW = "AWAITING_REVIEW"
    INFO_REQUESTED = "INFO_REQUESTED"
    APPROVED_REPRINT = "APPROVED_REPRINT"
    APPROVED_REFUND = "APPROVED_REFUND"
    REJECTED = "REJECTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"


class IssueReason(str, enum.Enum):
    DAMAGED_IN_TRANSIT = "DAMAGED_IN_TRANSIT"
    QUALITY_ISSUE = "QUALITY_ISSUE"
    WRONG_ITEM = "WRONG_ITEM"
    PRINTING_ERROR = "PRINTING_ERROR"
    NEVER_ARRIVED = "NEVER_ARRIVED"
    OTHER = "OTHER"


class IssueResolutionType(str, enum.Enum):
    REPRINT = "REPRINT"
    FULL_REFUND = "FULL_REFUND"
    PARTIAL_REFUND = "PARTIAL_REFUND"


class CarrierFault(str, enum.Enum):
    CARRIER_FAULT = "CARRIER_FAULT"
    NOT_CARRIER_FAULT = "NOT_CARRIER_FAULT"
    UNKNOWN = "UNKNOWN"


class MessageSender(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"


class Issue(Base):
    __tablename__ = "issues"

    id = Column(String(36), primary_key=True, default=new_id)
    order_item_id = Column(String(36), ForeignKey("order_items.id"), unique=True, nullable=False)
    reason = Column(Enum(IssueReason), nullable=False)
    status = Column(Enum(IssueStatus), default=IssueStatus.SUBMITTED, nullable=False, index=True)
    resolved_type = Column(Enum(IssueResolutionType), nullable=True)
    carrier_fault = Column(Enum(CarrierFault), default=CarrierFault.UNKNOWN, nullable=False)
    initial_notes = Column(Text, nullable=True)
    image_urls = Column(JSON, nullable=True)
    created_by = Column(String(36), nullable=True)

    # Rejection; rejection_final blocks any further appeal
    rejection_reason = Column(Text, nullable=True)
    rejection_final = Column(Boolean, default=False, nullable=False)

    # Resolution links
    reprint_order_id = Column(String(36), nullable=True)
    reprint_item_id = Column(String(36), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    stripe_refund_id = Column(String(255), nullable=True)

    # Terminal lock, independent of status
    is_concluded = Column(Boolean, default=False, nullable=False)
    concluded_at = Column(DateTime, nullable=True)
    concluded_by = Column(String(36), nullable=True)
    concluded_reason = Column(Text, nullable=True)

    original_issue_id = Column(String(36), ForeignKey("issues.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    reviewed_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    order_item = relationship("OrderItem", back_populates="issue")
    messages = relationship(
        "IssueMessage", back_populates="issue", order_by="IssueMessage.created_at", passive_deletes=True
    )
    original_issue = relationship("Issue", remote_side=[id], back_populates="child_issues")
    child_issues = relationship("Issue", back_populates="original_issue")


class IssueMessage(Base):
    __tablename__ = "issue_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    issue_id = Column(String(36), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    sender = Column(Enum(MessageSender), nullable=False)
    sender_id = Column(String(36), nullable=True)
    content = Column(Text, nullable=False)
    image_urls = Column(JSON, nullable=True)
    read_at = Column(DateTime, nullable=True)
    email_sent = Column(Boolean, default=False, nullable=False)
    email_sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    issue = relationship("Issue", back_populates="messages")
