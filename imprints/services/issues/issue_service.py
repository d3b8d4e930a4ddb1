# imprints/services/issues/issue_service.py
# Customer reporting, issue detail views and withdrawal.
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from imprints.core.config import settings
from imprints.models.issue import CarrierFault, Issue, IssueMessage, IssueReason, IssueStatus, MessageSender
from imprints.models.order import OrderItem, OrderStatus, ReprintLineage
from imprints.services.issues.loaders import (
    clean_image_urls, load_issue_detail, load_issue_with_order, owner_id,
)
from imprints.services.issues.messages import mark_messages_as_read
from imprints.services.issues.status_machine import CONCLUDED_ERROR, can_withdraw
from imprints.services.results import ErrorKind, IssueOperationResult, ReportIssueResult, ServiceResult

logger = logging.getLogger(__name__)

REPORTABLE_ORDER_STATUSES = frozenset({OrderStatus.shipped, OrderStatus.delivered})


async def report_issue(
    db: AsyncSession,
    order_id: str,
    item_id: str,
    customer_id: str,
    reason: str,
    notes: Optional[str] = None,
    image_urls: Optional[list[str]] = None,
) -> ReportIssueResult:
    """
    Opens an issue on a shipped or delivered item.

    The issue goes straight to AWAITING_REVIEW. Reports on a reprinted item
    are chained to the issue raised on the original item.
    """
    try:
        reason = IssueReason(reason)
    except ValueError:
        return ReportIssueResult.fail(ErrorKind.validation, f"Invalid issue reason: {reason}")

    item = await db.scalar(
        select(OrderItem)
        .where(OrderItem.id == item_id)
        .options(selectinload(OrderItem.order), selectinload(OrderItem.issue))
    )
    if item is None:
        return ReportIssueResult.fail(ErrorKind.not_found, "Order item not found")
    if item.order.customer_id != customer_id:
        return ReportIssueResult.fail(ErrorKind.forbidden, "Access denied")
    if item.order_id != order_id:
        return ReportIssueResult.fail(ErrorKind.validation, "Item does not belong to this order")

    order = item.order
    if order.status not in REPORTABLE_ORDER_STATUSES:
        return ReportIssueResult.fail(
            ErrorKind.conflict, "Issues can only be reported for shipped or delivered orders"
        )

    window = settings.ISSUE_REPORTING_WINDOW_DAYS
    reference = order.updated_at or order.created_at
    if reference and datetime.utcnow() - reference > timedelta(days=window):
        return ReportIssueResult.fail(
            ErrorKind.conflict, f"Issues must be reported within {window} days of delivery"
        )

    if item.issue is not None:
        return ReportIssueResult.fail(ErrorKind.conflict, "An issue has already been reported for this item")

    original_issue_id = None
    lineage = item.lineage
    if isinstance(lineage, ReprintLineage):
        original_issue_id = await db.scalar(
            select(Issue.id).where(Issue.order_item_id == lineage.original_item_id)
        )

    issue = Issue(
        order_item_id=item.id,
        reason=reason,
        status=IssueStatus.AWAITING_REVIEW,
        carrier_fault=(
            CarrierFault.CARRIER_FAULT if reason == IssueReason.DAMAGED_IN_TRANSIT else CarrierFault.UNKNOWN
        ),
        initial_notes=notes.strip() if notes and notes.strip() else None,
        image_urls=clean_image_urls(image_urls),
        created_by=customer_id,
        original_issue_id=original_issue_id,
    )
    db.add(issue)
    await db.commit()

    logger.info(f"[Issue] {issue.id} reported on item {item.id} ({reason.value})")
    return ReportIssueResult(
        success=True,
        issue=issue,
        message="Issue reported successfully. Our team will review it shortly.",
    )


async def get_customer_issue(db: AsyncSession, issue_id: str, customer_id: str) -> IssueOperationResult:
    issue = await load_issue_detail(db, issue_id)
    if issue is None:
        return IssueOperationResult.fail(ErrorKind.not_found, "Issue not found")
    if owner_id(issue) != customer_id:
        return IssueOperationResult.fail(ErrorKind.forbidden, "Access denied")

    await mark_messages_as_read(db, issue.id, MessageSender.ADMIN)
    return IssueOperationResult(success=True, issue=issue)


async def get_issue_admin(db: AsyncSession, issue_id: str) -> IssueOperationResult:
    issue = await load_issue_detail(db, issue_id)
    if issue is None:
        return IssueOperationResult.fail(ErrorKind.not_found, "Issue not found")

    await mark_messages_as_read(db, issue.id, MessageSender.CUSTOMER)
    return IssueOperationResult(success=True, issue=issue)


async def withdraw_issue(db: AsyncSession, issue_id: str, customer_id: str) -> ServiceResult:
    """Customer deletes their own issue while nobody has acted on it yet."""
    issue = await load_issue_with_order(db, issue_id)
    if issue is None:
        return ServiceResult.fail(ErrorKind.not_found, "Issue not found")
    if owner_id(issue) != customer_id:
        return ServiceResult.fail(ErrorKind.forbidden, "Access denied")
    if issue.is_concluded:
        return ServiceResult.fail(ErrorKind.conflict, CONCLUDED_ERROR)
    if not can_withdraw(issue.status):
        return ServiceResult.fail(
            ErrorKind.conflict, "This issue can no longer be withdrawn as it is already being processed"
        )

    await db.execute(delete(IssueMessage).where(IssueMessage.issue_id == issue.id))
    await db.delete(issue)
    await db.commit()

    logger.info(f"[Issue] {issue_id} withdrawn by customer {customer_id}")
    return ServiceResult(success=True)
