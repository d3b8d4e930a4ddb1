# imprints/services/issues/messages.py
# Issue conversation: customer/admin messages, read state and appeals.
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from imprints.models.issue import IssueMessage, IssueStatus, MessageSender
from imprints.services.issues.loaders import (
    clean_image_urls, load_issue, load_issue_with_order, owner_id,
)
from imprints.services.issues.status_machine import is_closed
from imprints.services.results import ErrorKind, MessageOperationResult, ServiceResult

logger = logging.getLogger(__name__)

APPEAL_PREFIX = "**Appeal:**"


def new_message(
    issue_id: str,
    sender: MessageSender,
    sender_id: Optional[str],
    content: str,
    image_urls: Optional[list[str]] = None,
) -> IssueMessage:
    return IssueMessage(
        issue_id=issue_id,
        sender=sender,
        sender_id=sender_id,
        content=content,
        image_urls=image_urls,
        created_at=datetime.utcnow(),
    )


async def mark_messages_as_read(db: AsyncSession, issue_id: str, sender: MessageSender) -> int:
    """Marks unread messages from sender as read; returns how many changed."""
    result = await db.execute(
        update(IssueMessage)
        .where(
            IssueMessage.issue_id == issue_id,
            IssueMessage.sender == MessageSender(sender),
            IssueMessage.read_at.is_(None),
        )
        .values(read_at=datetime.utcnow())
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    return result.rowcount


async def get_issue_messages(db: AsyncSession, issue_id: str) -> list[IssueMessage]:
    result = await db.scalars(
        select(IssueMessage).where(IssueMessage.issue_id == issue_id).order_by(IssueMessage.created_at)
    )
    return list(result)


async def mark_message_email_sent(db: AsyncSession, message_id: str) -> bool:
    message = await db.get(IssueMessage, message_id)
    if message is None:
        return False
    message.email_sent = True
    message.email_sent_at = datetime.utcnow()
    await db.commit()
    return True


async def send_customer_message(
    db: AsyncSession,
    issue_id: str,
    customer_id: str,
    content: str,
    image_urls: Optional[list[str]] = None,
) -> MessageOperationResult:
    """
    Customer replies on their issue. A reply to an INFO_REQUESTED issue puts it
    back in the review queue in the same commit.
    """
    if not content or not content.strip():
        return MessageOperationResult.fail(ErrorKind.validation, "Message content is required")

    issue = await load_issue_with_order(db, issue_id)
    if issue is None:
        return MessageOperationResult.fail(ErrorKind.not_found, "Issue not found")
    if owner_id(issue) != customer_id:
        return MessageOperationResult.fail(ErrorKind.forbidden, "Access denied")
    if issue.is_concluded:
        return MessageOperationResult.fail(
            ErrorKind.conflict, "This issue has been concluded and no longer accepts messages"
        )

    message = new_message(issue.id, MessageSender.CUSTOMER, customer_id, content.strip(), clean_image_urls(image_urls))
    db.add(message)

    if issue.status == IssueStatus.INFO_REQUESTED:
        issue.status = IssueStatus.AWAITING_REVIEW
        logger.info(f"[Issue] {issue.id}: customer replied, back to AWAITING_REVIEW")

    await db.commit()
    return MessageOperationResult(success=True, message=message)


async def send_admin_message(
    db: AsyncSession,
    issue_id: str,
    admin_id: str,
    content: str,
    image_urls: Optional[list[str]] = None,
) -> MessageOperationResult:
    if not content or not content.strip():
        return MessageOperationResult.fail(ErrorKind.validation, "Message content is required")

    issue = await load_issue(db, issue_id)
    if issue is None:
        return MessageOperationResult.fail(ErrorKind.not_found, "Issue not found")
    if is_closed(issue.status):
        return MessageOperationResult.fail(
            ErrorKind.conflict, "This issue has been closed and no longer accepts messages"
        )

    message = new_message(issue.id, MessageSender.ADMIN, admin_id, content.strip(), clean_image_urls(image_urls))
    db.add(message)
    await db.commit()
    return MessageOperationResult(success=True, message=message)


async def appeal_issue(
    db: AsyncSession,
    issue_id: str,
    customer_id: str,
    reason: str,
    image_urls: Optional[list[str]] = None,
) -> ServiceResult:
    """
    Customer appeals a rejection, returning the issue to the review queue.
    A final rejection (rejection_final) cannot be appealed.
    """
    if not reason or not reason.strip():
        return ServiceResult.fail(ErrorKind.validation, "Please provide a reason for your appeal")

    issue = await load_issue_with_order(db, issue_id)
    if issue is None:
        return ServiceResult.fail(ErrorKind.not_found, "Issue not found")
    if owner_id(issue) != customer_id:
        return ServiceResult.fail(ErrorKind.forbidden, "Access denied")
    if issue.is_concluded:
        return ServiceResult.fail(ErrorKind.conflict, "This issue has been concluded and cannot be appealed")
    if issue.status != IssueStatus.REJECTED:
        return ServiceResult.fail(ErrorKind.conflict, "Only rejected issues can be appealed")
    if issue.rejection_final:
        return ServiceResult.fail(
            ErrorKind.conflict, "This issue has already been appealed and the rejection is final"
        )

    db.add(new_message(
        issue.id,
        MessageSender.CUSTOMER,
        customer_id,
        f"{APPEAL_PREFIX} {reason.strip()}",
        clean_image_urls(image_urls),
    ))
    issue.status = IssueStatus.AWAITING_REVIEW
    issue.reviewed_at = None
    await db.commit()

    logger.info(f"[Issue] {issue.id}: appealed, back to AWAITING_REVIEW")
    return ServiceResult(success=True)
