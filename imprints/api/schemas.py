# imprints/api/schemas.py
# Request bodies and response models for the HTTP layer.
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from imprints.models.issue import (
    CarrierFault, IssueReason, IssueResolutionType, IssueStatus, MessageSender,
)
from imprints.models.order import OrderStatus


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---- requests ----

class ReportIssueIn(BaseModel):
    order_id: str
    item_id: str
    reason: IssueReason
    notes: Optional[str] = None
    image_urls: Optional[list[str]] = None


class MessageIn(BaseModel):
    content: str
    image_urls: Optional[list[str]] = None


class AppealIn(BaseModel):
    reason: str
    image_urls: Optional[list[str]] = None


class ReviewIn(BaseModel):
    action: str
    message: Optional[str] = None
    is_final_rejection: bool = False


class ProcessIn(BaseModel):
    refund_type: Optional[IssueResolutionType] = None
    notes: Optional[str] = None


class ConcludeIn(BaseModel):
    reason: Optional[str] = None


class OrderStatusIn(BaseModel):
    status: OrderStatus
    force: bool = False


# ---- responses ----

class MessageOut(ORMModel):
    id: str
    issue_id: str
    sender: MessageSender
    sender_id: Optional[str] = None
    content: str
    image_urls: Optional[list[str]] = None
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class OrderSummaryOut(ORMModel):
    id: str
    status: OrderStatus
    total_price: Decimal
    created_at: Optional[datetime] = None


class OrderItemOut(ORMModel):
    id: str
    order_id: str
    quantity: int
    total_price: Decimal
    order: OrderSummaryOut


class IssueOut(ORMModel):
    id: str
    order_item_id: str
    reason: IssueReason
    status: IssueStatus
    resolved_type: Optional[IssueResolutionType] = None
    carrier_fault: CarrierFault
    initial_notes: Optional[str] = None
    image_urls: Optional[list[str]] = None
    rejection_reason: Optional[str] = None
    rejection_final: bool = False
    reprint_order_id: Optional[str] = None
    reprint_item_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    stripe_refund_id: Optional[str] = None
    is_concluded: bool = False
    concluded_at: Optional[datetime] = None
    concluded_reason: Optional[str] = None
    original_issue_id: Optional[str] = None
    created_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


class IssueWithOrderOut(IssueOut):
    order_item: OrderItemOut


class IssueDetailOut(IssueWithOrderOut):
    messages: list[MessageOut] = []


class CustomerIssueStats(BaseModel):
    total: int
    pending: int
    resolved: int
    unread_messages: int


class CustomerIssuesOut(BaseModel):
    issues: list[IssueWithOrderOut]
    stats: CustomerIssueStats


class AdminIssuesOut(BaseModel):
    issues: list[IssueWithOrderOut]
    total: int


class DashboardStatsOut(BaseModel):
    by_status: dict[str, int]
    carrier_fault: int
    needs_attention: int
    unread_messages: int


class ReviewOut(BaseModel):
    message: str
    issue: IssueOut


class ProcessOut(BaseModel):
    message: str
    reprint_order_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    issue: IssueOut


class AutoCloseOut(BaseModel):
    dry_run: bool
    closed_count: int
    issue_ids: list[str]


class TransitionOut(BaseModel):
    order_id: str
    previous_status: OrderStatus
    new_status: OrderStatus
