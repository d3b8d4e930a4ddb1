"""
Customer side of issues: reporting, detail views and withdrawal.
"""

from datetime import datetime, timedelta

import pytest

from imprints.models.issue import CarrierFault, Issue, IssueMessage, IssueStatus, MessageSender
from imprints.models.order import OrderStatus, ReprintLineage
from imprints.models.user import User
from imprints.services.issues import issue_service
from imprints.services.results import ErrorKind


# ============================================================================
# report_issue
# ============================================================================


async def test_report_issue(db, factory, customer):
    order = await factory.order(customer=customer)

    result = await issue_service.report_issue(
        db, order.id, order.items[0].id, customer.id, "DAMAGED_IN_TRANSIT",
        notes=" Corner crushed ", image_urls=["https://cdn.example.com/a.jpg"],
    )

    assert result.success
    saved = await factory.get(Issue, result.issue.id)
    assert saved.status == IssueStatus.AWAITING_REVIEW
    assert saved.carrier_fault == CarrierFault.CARRIER_FAULT
    assert saved.initial_notes == "Corner crushed"
    assert saved.image_urls == ["https://cdn.example.com/a.jpg"]
    assert saved.original_issue_id is None


async def test_report_issue_other_reason_has_unknown_fault(db, factory, customer):
    order = await factory.order(customer=customer, status=OrderStatus.shipped)

    result = await issue_service.report_issue(db, order.id, order.items[0].id, customer.id, "QUALITY_ISSUE")

    assert result.success
    assert result.issue.carrier_fault == CarrierFault.UNKNOWN


async def test_report_issue_checks(db, factory, customer):
    order = await factory.order(customer=customer)
    other_order = await factory.order(customer=customer)
    item_id = order.items[0].id

    cases = [
        ((order.id, item_id, customer.id, "BROKEN"), ErrorKind.validation),
        ((order.id, "missing", customer.id, "OTHER"), ErrorKind.not_found),
        ((order.id, item_id, "someone-else", "OTHER"), ErrorKind.forbidden),
        ((other_order.id, item_id, customer.id, "OTHER"), ErrorKind.validation),
    ]
    for args, kind in cases:
        result = await issue_service.report_issue(db, *args)
        assert result.error_kind == kind, args
    assert await factory.count(Issue) == 0


async def test_report_issue_requires_shipped_order(db, factory, customer):
    order = await factory.order(customer=customer, status=OrderStatus.printing)

    result = await issue_service.report_issue(db, order.id, order.items[0].id, customer.id, "OTHER")

    assert result.error == "Issues can only be reported for shipped or delivered orders"


async def test_report_issue_outside_window(db, factory, customer):
    order = await factory.order(customer=customer, updated_at=datetime.utcnow() - timedelta(days=45))

    result = await issue_service.report_issue(db, order.id, order.items[0].id, customer.id, "OTHER")

    assert result.error_kind == ErrorKind.conflict
    assert "30 days" in result.error


async def test_one_issue_per_item(db, factory, customer):
    order = await factory.order(customer=customer)
    await factory.issue(order)

    result = await issue_service.report_issue(db, order.id, order.items[0].id, customer.id, "OTHER")

    assert result.error == "An issue has already been reported for this item"


async def test_report_on_reprint_links_original_issue(db, factory, customer):
    original = await factory.order(customer=customer)
    original_issue = await factory.issue(original, status=IssueStatus.COMPLETED)
    lineage = ReprintLineage(
        original_order_id=original.id, original_item_id=original.items[0].id, issue_id=original_issue.id
    )
    reprint = await factory.order(
        customer=await factory.get(User, customer.id),
        total="0.00",
        with_payment=False,
        item_metadata=lineage.to_metadata(),
    )

    result = await issue_service.report_issue(db, reprint.id, reprint.items[0].id, customer.id, "PRINTING_ERROR")

    assert result.success
    assert (await factory.get(Issue, result.issue.id)).original_issue_id == original_issue.id


# ============================================================================
# Detail views
# ============================================================================


async def test_customer_detail_marks_admin_messages_read(db, factory, customer):
    issue = await factory.issue(await factory.order(customer=customer))
    await factory.message(issue, MessageSender.ADMIN, "We are looking into it")
    await factory.message(issue, MessageSender.CUSTOMER, "Thanks")

    result = await issue_service.get_customer_issue(db, issue.id, customer.id)

    assert result.success
    assert len(result.issue.messages) == 2
    assert result.issue.order_item.order.customer_id == customer.id
    unread = await factory.all(IssueMessage, IssueMessage.read_at.is_(None))
    assert [m.sender for m in unread] == [MessageSender.CUSTOMER]


async def test_customer_detail_ownership(db, factory, customer):
    issue = await factory.issue(await factory.order())

    result = await issue_service.get_customer_issue(db, issue.id, customer.id)

    assert result.error_kind == ErrorKind.forbidden


async def test_admin_detail_marks_customer_messages_read(db, factory):
    issue = await factory.issue(await factory.order())
    await factory.message(issue, MessageSender.CUSTOMER, "Any news?")

    result = await issue_service.get_issue_admin(db, issue.id)

    assert result.success
    assert await factory.count(IssueMessage, IssueMessage.read_at.is_(None)) == 0


# ============================================================================
# withdraw_issue
# ============================================================================


async def test_withdraw_awaiting_review_deletes_issue(db, factory, customer):
    issue = await factory.issue(await factory.order(customer=customer), status=IssueStatus.AWAITING_REVIEW)
    await factory.message(issue, MessageSender.CUSTOMER, "Extra detail")

    result = await issue_service.withdraw_issue(db, issue.id, customer.id)

    assert result.success
    assert await factory.get(Issue, issue.id) is None
    assert await factory.count(IssueMessage) == 0


async def test_withdraw_approved_issue_fails(db, factory, customer):
    issue = await factory.issue(await factory.order(customer=customer), status=IssueStatus.APPROVED_REPRINT)

    result = await issue_service.withdraw_issue(db, issue.id, customer.id)

    assert not result.success
    assert result.error == "This issue can no longer be withdrawn as it is already being processed"
    saved = await factory.get(Issue, issue.id)
    assert saved is not None
    assert saved.status == IssueStatus.APPROVED_REPRINT


@pytest.mark.parametrize("customer_id,kind", [("someone-else", ErrorKind.forbidden)])
async def test_withdraw_other_customers_issue(db, factory, customer_id, kind):
    issue = await factory.issue(await factory.order())

    result = await issue_service.withdraw_issue(db, issue.id, customer_id)

    assert result.error_kind == kind
    assert await factory.get(Issue, issue.id) is not None
