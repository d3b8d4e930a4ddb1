# imprints/services/issues/resolution.py
# Admin side of the issue workflow: review decisions, processing approved
# issues (free reprint or Stripe refund), concluding and reopening.
import enum
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from imprints.core.config import settings
from imprints.db.base import new_id
from imprints.models.issue import (
    Issue, IssueResolutionType, IssueStatus, MessageSender,
)
from imprints.models.order import Order, OrderItem, OrderStatus, ReprintLineage
from imprints.models.payment import Payment, PaymentStatus
from imprints.services import accounting
from imprints.services.issues.loaders import load_issue, load_issue_with_order
from imprints.services.issues.messages import new_message
from imprints.services.issues.status_machine import CONCLUDED_ERROR, can_process, can_review
from imprints.services.outbox import AccountingOutbox
from imprints.services.results import (
    ErrorKind, IssueOperationResult, ProcessResult, ReviewResult, StaleIssuesResult,
)
from imprints.services.stripe_gateway import RefundResult, StripeGateway

logger = logging.getLogger(__name__)

SYSTEM_USER_ID = "00000000-0000-0000-0000-000000000000"

REFUND_TYPES = (IssueResolutionType.FULL_REFUND, IssueResolutionType.PARTIAL_REFUND)


class ReviewAction(str, enum.Enum):
    APPROVE_REPRINT = "APPROVE_REPRINT"
    APPROVE_REFUND = "APPROVE_REFUND"
    REQUEST_INFO = "REQUEST_INFO"
    REJECT = "REJECT"


# =============================================================================
# Review
# =============================================================================

async def review_issue(
    db: AsyncSession,
    issue_id: str,
    action: str,
    admin_id: str,
    message: Optional[str] = None,
    is_final_rejection: bool = False,
) -> ReviewResult:
    """
    Admin decision on an issue awaiting review.

    The status change and the ADMIN message that records it are committed
    together. A final rejection also concludes the issue.
    """
    try:
        action = ReviewAction(action)
    except ValueError:
        return ReviewResult.fail(ErrorKind.validation, "Invalid action")

    issue = await load_issue(db, issue_id)
    if issue is None:
        return ReviewResult.fail(ErrorKind.not_found, "Issue not found")
    if issue.is_concluded:
        return ReviewResult.fail(ErrorKind.conflict, CONCLUDED_ERROR)

    if not can_review(issue.status):
        return ReviewResult.fail(
            ErrorKind.conflict,
            f"This issue cannot be reviewed in its current status: {issue.status.value}",
        )

    note = message.strip() if message and message.strip() else None
    resolved_type = None

    if action == ReviewAction.APPROVE_REPRINT:
        new_status = IssueStatus.APPROVED_REPRINT
        resolved_type = IssueResolutionType.REPRINT
        content = note or "Your issue has been approved for a free reprint. We will process this shortly."
    elif action == ReviewAction.APPROVE_REFUND:
        new_status = IssueStatus.APPROVED_REFUND
        resolved_type = IssueResolutionType.FULL_REFUND
        content = note or "Your issue has been approved for a refund. We will process this shortly."
    elif action == ReviewAction.REQUEST_INFO:
        if not note:
            return ReviewResult.fail(
                ErrorKind.validation, "A message is required when requesting more information"
            )
        new_status = IssueStatus.INFO_REQUESTED
        content = note
    else:
        if not note:
            return ReviewResult.fail(ErrorKind.validation, "A reason is required when rejecting an issue")
        new_status = IssueStatus.REJECTED
        content = note

    now = datetime.utcnow()
    previous = issue.status
    issue.status = new_status
    issue.resolved_type = resolved_type
    issue.reviewed_at = now

    final = action == ReviewAction.REJECT and is_final_rejection
    if action == ReviewAction.REJECT:
        issue.rejection_reason = note
    if final:
        issue.rejection_final = True
        issue.is_concluded = True
        issue.concluded_at = now
        issue.concluded_by = admin_id

    db.add(new_message(issue.id, MessageSender.ADMIN, admin_id, content))
    await db.commit()

    logger.info(f"[Issue] {issue.id}: {previous.value} -> {new_status.value} by {admin_id}")

    summaries = {
        ReviewAction.APPROVE_REPRINT: "Issue approved for reprint. Ready for processing.",
        ReviewAction.APPROVE_REFUND: "Issue approved for refund. Ready for processing.",
        ReviewAction.REQUEST_INFO: "Information requested from customer.",
        ReviewAction.REJECT: "Issue rejected (final)." if final else "Issue rejected. Customer may appeal.",
    }
    return ReviewResult(success=True, message=summaries[action], issue=issue)


# =============================================================================
# Processing
# =============================================================================

async def process_issue(
    db: AsyncSession,
    issue_id: str,
    admin_id: str,
    *,
    gateway: StripeGateway,
    outbox: Optional[AccountingOutbox] = None,
    refund_type: Optional[str] = None,
    notes: Optional[str] = None,
) -> ProcessResult:
    """
    Carries out an approved decision: creates the free reprint order or
    refunds the payment through Stripe.

    An issue left in PROCESSING by an interrupted refund can be processed
    again; the refund idempotency key is derived from the issue id.
    """
    issue = await load_issue_with_order(db, issue_id)
    if issue is None:
        return ProcessResult.fail(ErrorKind.not_found, "Issue not found")
    if issue.is_concluded:
        return ProcessResult.fail(ErrorKind.conflict, CONCLUDED_ERROR)

    refund_retry = issue.status == IssueStatus.PROCESSING and issue.resolved_type in REFUND_TYPES
    if not can_process(issue.status) and not refund_retry:
        return ProcessResult.fail(ErrorKind.conflict, "Issue must be approved before processing")

    if issue.status == IssueStatus.APPROVED_REPRINT:
        return await _process_reprint(db, issue, admin_id, outbox, notes)
    return await _process_refund(db, issue, admin_id, gateway, outbox, refund_type, notes)


async def _claim(db: AsyncSession, issue: Issue, expected: IssueStatus, **values) -> bool:
    """Conditional update of the issue; False when another request got there first."""
    result = await db.execute(
        update(Issue)
        .where(Issue.id == issue.id, Issue.status == expected)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


async def _process_reprint(
    db: AsyncSession,
    issue: Issue,
    admin_id: str,
    outbox: Optional[AccountingOutbox],
    notes: Optional[str],
) -> ProcessResult:
    item = issue.order_item
    order = item.order
    now = datetime.utcnow()

    reprint_order = Order(
        id=new_id(),
        customer_id=order.customer_id,
        design_id=item.design_id,
        status=OrderStatus.confirmed,
        print_size=order.print_size,
        material=order.material,
        orientation=order.orientation,
        preview_url=order.preview_url,
        subtotal=Decimal("0"),
        total_price=Decimal("0"),
        shipping_address=order.shipping_address,
    )
    lineage = ReprintLineage(original_order_id=order.id, original_item_id=item.id, issue_id=issue.id)
    reprint_item = OrderItem(
        id=new_id(),
        order_id=reprint_order.id,
        product_id=item.product_id,
        variant_id=item.variant_id,
        design_id=item.design_id,
        quantity=item.quantity,
        unit_price=Decimal("0"),
        total_price=Decimal("0"),
        customization=item.customization,
        item_metadata=lineage.to_metadata(item.item_metadata),
    )

    claimed = await _claim(
        db, issue, IssueStatus.APPROVED_REPRINT,
        status=IssueStatus.COMPLETED,
        resolved_type=IssueResolutionType.REPRINT,
        reprint_order_id=reprint_order.id,
        reprint_item_id=reprint_item.id,
        processed_at=now,
        is_concluded=True,
        concluded_at=now,
        concluded_by=admin_id,
    )
    if not claimed:
        await db.rollback()
        return ProcessResult.fail(ErrorKind.conflict, "Issue is already being processed")

    db.add_all([
        reprint_order,
        reprint_item,
        new_message(
            issue.id, MessageSender.ADMIN, admin_id,
            notes or "Your reprint order has been created and will be processed shortly.",
        ),
    ])
    await db.commit()
    logger.info(f"[Issue] {issue.id}: reprint order {reprint_order.id} created for order {order.id}")

    if outbox is not None:
        original_id, reprint_id, reason = order.id, reprint_order.id, issue.reason.value
        outbox.submit(
            f"reprint-expense:{reprint_id}",
            lambda session: accounting.create_reprint_expense(session, original_id, reprint_id, reason),
        )

    return ProcessResult(
        success=True,
        message="Reprint order created successfully",
        reprint_order_id=reprint_order.id,
        issue=issue,
    )


async def _find_payment(db: AsyncSession, issue: Issue) -> tuple[Optional[Payment], Optional[Decimal]]:
    """
    Payment to refund and, for reprints, the original order total.
    Reprint orders have no payment of their own, so the item lineage leads
    back to the original order.
    """
    order = issue.order_item.order
    if order.payment is not None:
        return order.payment, None

    lineage = issue.order_item.lineage
    if isinstance(lineage, ReprintLineage):
        original = await db.scalar(
            select(Order)
            .where(Order.id == lineage.original_order_id)
            .options(selectinload(Order.payment))
        )
        if original is not None and original.payment is not None:
            return original.payment, Decimal(original.total_price)
    return None, None


async def _process_refund(
    db: AsyncSession,
    issue: Issue,
    admin_id: str,
    gateway: StripeGateway,
    outbox: Optional[AccountingOutbox],
    refund_type: Optional[str],
    notes: Optional[str],
) -> ProcessResult:
    item = issue.order_item
    order = item.order
    loaded_status = issue.status

    try:
        resolved_type = IssueResolutionType(refund_type or issue.resolved_type or IssueResolutionType.FULL_REFUND)
    except ValueError:
        return ProcessResult.fail(ErrorKind.validation, f"Invalid refund type: {refund_type}")
    if resolved_type not in REFUND_TYPES:
        return ProcessResult.fail(ErrorKind.validation, f"Invalid refund type: {resolved_type.value}")

    payment, original_total = await _find_payment(db, issue)
    if payment is None or not payment.stripe_payment_id:
        return ProcessResult.fail(ErrorKind.not_found, "No payment found for this order")

    if payment.status != PaymentStatus.COMPLETED:
        return ProcessResult.fail(
            ErrorKind.conflict,
            f'Payment status is "{payment.status.value}". Refunds can only be processed for completed payments.',
        )

    resolved = await gateway.resolve_payment_intent_id(payment.stripe_payment_id)
    if not resolved.payment_intent_id:
        return ProcessResult.fail(ErrorKind.external_service, f"Cannot process refund: {resolved.error}")
    if not resolved.is_paid:
        return ProcessResult.fail(ErrorKind.conflict, "Cannot process refund: Payment was not completed in Stripe.")

    if payment.refunded_at is not None:
        return ProcessResult.fail(ErrorKind.conflict, "This order has already been refunded")

    if resolved_type == IssueResolutionType.PARTIAL_REFUND:
        amount = Decimal(item.total_price or 0) or original_total or Decimal("0")
    else:
        amount = original_total or Decimal(order.total_price or 0)
    if amount <= 0:
        return ProcessResult.fail(ErrorKind.validation, "Cannot process refund: refund amount is 0")

    # Step 1: mark the issue PROCESSING before calling Stripe
    claimed = await _claim(db, issue, loaded_status, status=IssueStatus.PROCESSING, resolved_type=resolved_type)
    if not claimed:
        await db.rollback()
        return ProcessResult.fail(ErrorKind.conflict, "Issue is already being processed")
    if payment.stripe_payment_id != resolved.payment_intent_id:
        # stored checkout session id, keep the payment intent from now on
        payment.stripe_payment_id = resolved.payment_intent_id
        payment.paid_at = payment.paid_at or datetime.utcnow()
    await db.commit()

    # Step 2: Stripe, outside any database transaction
    logger.info(f"[Issue] {issue.id}: refunding £{amount:.2f} on {resolved.payment_intent_id}")
    try:
        refund = await gateway.create_refund(
            resolved.payment_intent_id, "requested_by_customer", amount, f"issue_{issue.id}"
        )
    except Exception as e:
        logger.error(f"[Issue] {issue.id}: refund call raised: {e}", exc_info=True)
        refund = RefundResult(success=False, error=str(e) or "Refund processing failed")

    if not refund.success:
        return await _revert_refund(db, issue, admin_id, refund.error)

    # Step 3: record the refund
    now = datetime.utcnow()
    refunded = refund.amount or amount
    issue.status = IssueStatus.COMPLETED
    issue.resolved_type = resolved_type
    issue.refund_amount = refunded
    issue.stripe_refund_id = refund.refund_id
    issue.processed_at = now
    issue.is_concluded = True
    issue.concluded_at = now
    issue.concluded_by = admin_id

    payment.refunded_at = now
    if resolved_type == IssueResolutionType.FULL_REFUND:
        payment.status = PaymentStatus.REFUNDED
        # a partial refund leaves the order status alone
        order.status = OrderStatus.refunded
        if payment.order_id != order.id:
            # reprint: the paid original order is the one refunded
            paid_order = await db.get(Order, payment.order_id)
            paid_order.status = OrderStatus.refunded

    db.add(new_message(
        issue.id, MessageSender.ADMIN, admin_id,
        notes or f"Your refund of £{refunded:.2f} has been processed.",
    ))
    await db.commit()
    logger.info(f"[Issue] {issue.id}: refund {refund.refund_id} recorded (£{refunded:.2f})")

    if outbox is not None:
        order_id = payment.order_id
        reason = f"Issue {issue.id[:8].upper()} - {issue.reason.value}"
        outbox.submit(
            f"refund-entry:{issue.id}",
            lambda session: accounting.create_refund_entry(session, order_id, refunded, reason),
        )

    return ProcessResult(
        success=True,
        message="Refund processed successfully",
        refund_amount=refunded,
        issue=issue,
    )


async def _revert_refund(db: AsyncSession, issue: Issue, admin_id: str, error: Optional[str]) -> ProcessResult:
    """Compensating step: back to APPROVED_REFUND so the admin can retry."""
    error = error or "Refund processing failed"
    await _claim(db, issue, IssueStatus.PROCESSING, status=IssueStatus.APPROVED_REFUND)
    db.add(new_message(
        issue.id, MessageSender.ADMIN, admin_id,
        f"Refund processing failed: {error}. Please try again.",
    ))
    await db.commit()
    logger.warning(f"[Issue] {issue.id}: refund failed, reverted to APPROVED_REFUND: {error}")
    return ProcessResult.fail(ErrorKind.external_service, error)


# =============================================================================
# Conclude / reopen
# =============================================================================

async def conclude_issue(
    db: AsyncSession, issue_id: str, admin_id: str, reason: Optional[str] = None
) -> IssueOperationResult:
    """Locks the issue against further customer action, whatever its status."""
    issue = await load_issue(db, issue_id)
    if issue is None:
        return IssueOperationResult.fail(ErrorKind.not_found, "Issue not found")
    if issue.is_concluded:
        return IssueOperationResult.fail(ErrorKind.conflict, "Issue is already concluded")

    issue.is_concluded = True
    issue.concluded_at = datetime.utcnow()
    issue.concluded_by = admin_id
    issue.concluded_reason = reason or "Manually concluded by admin"
    db.add(new_message(
        issue.id, MessageSender.ADMIN, admin_id,
        reason or "This issue has been concluded. No further action is required.",
    ))
    await db.commit()

    logger.info(f"[Issue] {issue.id}: concluded by {admin_id}")
    return IssueOperationResult(success=True, issue=issue)


async def reopen_issue(db: AsyncSession, issue_id: str, admin_id: str) -> IssueOperationResult:
    issue = await load_issue(db, issue_id)
    if issue is None:
        return IssueOperationResult.fail(ErrorKind.not_found, "Issue not found")
    if not issue.is_concluded:
        return IssueOperationResult.fail(ErrorKind.conflict, "Issue is not concluded")

    issue.is_concluded = False
    issue.concluded_at = None
    issue.concluded_by = None
    issue.concluded_reason = None
    db.add(new_message(
        issue.id, MessageSender.ADMIN, admin_id, "This issue has been reopened for further review."
    ))
    await db.commit()

    logger.info(f"[Issue] {issue.id}: reopened by {admin_id}")
    return IssueOperationResult(success=True, issue=issue)


# =============================================================================
# Stale issues
# =============================================================================

async def find_stale_issues(db: AsyncSession, now: Optional[datetime] = None) -> list[Issue]:
    """
    INFO_REQUESTED issues the customer never answered: reviewed before the
    cutoff and the latest message is an old ADMIN one (or there is none).
    """
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=settings.STALE_ISSUE_DAYS)
    candidates = await db.scalars(
        select(Issue)
        .where(Issue.status == IssueStatus.INFO_REQUESTED, Issue.reviewed_at < cutoff)
        .options(selectinload(Issue.messages))
    )

    stale = []
    for issue in candidates:
        if not issue.messages:
            stale.append(issue)
            continue
        last = max(issue.messages, key=lambda m: m.created_at)
        if last.sender == MessageSender.ADMIN and last.created_at <= cutoff:
            stale.append(issue)
    return stale


async def auto_close_stale_issues(db: AsyncSession, dry_run: bool = False) -> StaleIssuesResult:
    stale = await find_stale_issues(db)
    ids = [issue.id for issue in stale]
    if dry_run or not stale:
        return StaleIssuesResult(success=True, closed_count=0 if dry_run else len(ids), issue_ids=ids)

    now = datetime.utcnow()
    days = settings.STALE_ISSUE_DAYS
    for issue in stale:
        issue.status = IssueStatus.CLOSED
        issue.closed_at = now
        db.add(new_message(
            issue.id, MessageSender.ADMIN, SYSTEM_USER_ID,
            f"This issue has been automatically closed due to no response within {days} days. "
            "If you still need assistance, please report a new issue or contact support.",
        ))
    await db.commit()

    logger.info(f"[Issue] auto-closed {len(ids)} stale issue(s)")
    return StaleIssuesResult(success=True, closed_count=len(ids), issue_ids=ids)
