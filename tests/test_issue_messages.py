"""
Issue conversation: customer/admin messages, appeals and read state.
"""

from datetime import datetime

import pytest

from imprints.models.issue import Issue, IssueMessage, IssueStatus, MessageSender
from imprints.services.issues import messages, resolution
from imprints.services.results import ErrorKind


# ============================================================================
# send_customer_message / send_admin_message
# ============================================================================


async def test_customer_reply_requeues_info_requested(db, factory, customer):
    issue = await factory.issue(await factory.order(customer=customer), status=IssueStatus.INFO_REQUESTED)

    result = await messages.send_customer_message(
        db, issue.id, customer.id, "  Photo attached  ", ["https://cdn.example.com/1.jpg", "", None]
    )

    assert result.success
    assert result.message.content == "Photo attached"
    assert result.message.image_urls == ["https://cdn.example.com/1.jpg"]
    assert (await factory.get(Issue, issue.id)).status == IssueStatus.AWAITING_REVIEW


async def test_customer_message_keeps_other_statuses(db, factory, customer):
    issue = await factory.issue(await factory.order(customer=customer), status=IssueStatus.APPROVED_REPRINT)

    result = await messages.send_customer_message(db, issue.id, customer.id, "Thanks!")

    assert result.success
    assert (await factory.get(Issue, issue.id)).status == IssueStatus.APPROVED_REPRINT


async def test_customer_message_checks(db, factory, customer):
    own = await factory.issue(await factory.order(customer=customer), is_concluded=True)
    other = await factory.issue(await factory.order())

    assert (await messages.send_customer_message(db, own.id, customer.id, "")).error_kind == ErrorKind.validation
    assert (await messages.send_customer_message(db, "missing", customer.id, "Hi")).error_kind == ErrorKind.not_found
    assert (await messages.send_customer_message(db, other.id, customer.id, "Hi")).error_kind == ErrorKind.forbidden
    assert (await messages.send_customer_message(db, own.id, customer.id, "Hi")).error_kind == ErrorKind.conflict
    assert await factory.count(IssueMessage) == 0


@pytest.mark.parametrize("status,allowed", [
    (IssueStatus.APPROVED_REFUND, True),
    (IssueStatus.REJECTED, True),
    (IssueStatus.COMPLETED, False),
    (IssueStatus.CLOSED, False),
])
async def test_admin_message_blocked_once_closed(db, factory, admin, status, allowed):
    issue = await factory.issue(await factory.order(), status=status)

    result = await messages.send_admin_message(db, issue.id, admin.id, "Update on your issue")

    assert result.success is allowed
    assert await factory.count(IssueMessage, IssueMessage.issue_id == issue.id) == (1 if allowed else 0)


async def test_mark_email_sent(db, factory):
    issue = await factory.issue(await factory.order())
    message = await factory.message(issue, MessageSender.ADMIN)

    assert await messages.mark_message_email_sent(db, message.id)
    assert not await messages.mark_message_email_sent(db, "missing")
    saved = await factory.get(IssueMessage, message.id)
    assert saved.email_sent
    assert saved.email_sent_at is not None


# ============================================================================
# appeal_issue
# ============================================================================


async def test_appeal_returns_issue_to_review(db, factory, customer):
    issue = await factory.issue(
        await factory.order(customer=customer), status=IssueStatus.REJECTED, reviewed_at=datetime.utcnow()
    )

    result = await messages.appeal_issue(db, issue.id, customer.id, "The print is clearly smudged")

    assert result.success
    saved = await factory.get(Issue, issue.id)
    assert saved.status == IssueStatus.AWAITING_REVIEW
    assert saved.reviewed_at is None
    thread = await messages.get_issue_messages(db, issue.id)
    assert [m.content for m in thread] == ["**Appeal:** The print is clearly smudged"]
    assert thread[0].sender == MessageSender.CUSTOMER


async def test_appeal_after_final_rejection_fails(db, factory, admin, customer):
    issue = await factory.issue(await factory.order(customer=customer))
    await resolution.review_issue(db, issue.id, "REJECT", admin.id, "Not covered", is_final_rejection=True)

    result = await messages.appeal_issue(db, issue.id, customer.id, "Please reconsider")

    assert not result.success
    assert (await factory.get(Issue, issue.id)).status == IssueStatus.REJECTED


async def test_second_appeal_allowed_while_rejection_not_final(db, factory, admin, customer):
    issue = await factory.issue(await factory.order(customer=customer))
    await resolution.review_issue(db, issue.id, "REJECT", admin.id, "Looks fine to us")
    assert (await messages.appeal_issue(db, issue.id, customer.id, "It is not")).success

    await resolution.review_issue(db, issue.id, "REJECT", admin.id, "Still fine")
    second = await messages.appeal_issue(db, issue.id, customer.id, "Still not")
    assert second.success

    await resolution.review_issue(db, issue.id, "REJECT", admin.id, "Final answer", is_final_rejection=True)
    third = await messages.appeal_issue(db, issue.id, customer.id, "Please")
    assert not third.success
    assert (await factory.get(Issue, issue.id)).rejection_final


async def test_appeal_requires_rejection(db, factory, customer):
    issue = await factory.issue(await factory.order(customer=customer), status=IssueStatus.AWAITING_REVIEW)

    result = await messages.appeal_issue(db, issue.id, customer.id, "Why?")

    assert result.error == "Only rejected issues can be appealed"


async def test_appeal_rejection_final_without_conclusion(db, factory, customer):
    issue = await factory.issue(
        await factory.order(customer=customer), status=IssueStatus.REJECTED, rejection_final=True
    )

    result = await messages.appeal_issue(db, issue.id, customer.id, "Again")

    assert result.error_kind == ErrorKind.conflict
    assert "final" in result.error


# ============================================================================
# mark_messages_as_read
# ============================================================================


async def test_mark_messages_as_read_only_touches_sender(db, factory):
    issue = await factory.issue(await factory.order())
    await factory.message(issue, MessageSender.ADMIN, "one")
    await factory.message(issue, MessageSender.ADMIN, "two", read_at=datetime(2024, 1, 1))
    await factory.message(issue, MessageSender.CUSTOMER, "three")

    changed = await messages.mark_messages_as_read(db, issue.id, MessageSender.ADMIN)

    assert changed == 1
    unread = await factory.all(IssueMessage, IssueMessage.read_at.is_(None))
    assert [m.content for m in unread] == ["three"]
