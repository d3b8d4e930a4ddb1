# imprints/api/admin_issues.py
# Admin issue routes: queue, dashboard, review, processing and conclusion.
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from imprints.api.deps import get_gateway, get_outbox, raise_for_result
from imprints.api.schemas import (
    AdminIssuesOut, AutoCloseOut, ConcludeIn, DashboardStatsOut, IssueDetailOut, IssueOut,
    MessageIn, MessageOut, ProcessIn, ProcessOut, ReviewIn, ReviewOut,
)
from imprints.core.security import get_db, require_role
from imprints.models.issue import CarrierFault, IssueStatus
from imprints.models.user import RoleEnum, User
from imprints.services.issues import issue_service, messages, resolution, stats
from imprints.services.outbox import AccountingOutbox
from imprints.services.stripe_gateway import StripeGateway

router = APIRouter()

require_admin = require_role(RoleEnum.admin)


@router.get("", response_model=AdminIssuesOut)
async def list_issues(
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    carrier_fault: Optional[CarrierFault] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return await stats.list_issues_admin(db, status_filter, carrier_fault, limit, offset)


@router.get("/stats", response_model=DashboardStatsOut)
async def dashboard_stats(db: AsyncSession = Depends(get_db), admin: User = Depends(require_admin)):
    dashboard = await stats.get_admin_dashboard_stats(db)
    return {
        **dashboard,
        "needs_attention": await stats.get_issues_needing_attention(db),
        "unread_messages": await stats.get_admin_unread_count(db),
    }


@router.post("/auto-close", response_model=AutoCloseOut)
async def auto_close(
    dry_run: bool = False,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Closes INFO_REQUESTED issues the customer stopped answering."""
    result = await resolution.auto_close_stale_issues(db, dry_run=dry_run)
    return {"dry_run": dry_run, "closed_count": result.closed_count, "issue_ids": result.issue_ids}


@router.get("/{issue_id}", response_model=IssueDetailOut)
async def get_issue(issue_id: str, db: AsyncSession = Depends(get_db), admin: User = Depends(require_admin)):
    result = await issue_service.get_issue_admin(db, issue_id)
    raise_for_result(result)
    return result.issue


@router.post("/{issue_id}/review", response_model=ReviewOut)
async def review(
    issue_id: str,
    body: ReviewIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    result = await resolution.review_issue(
        db, issue_id, body.action, admin.id, body.message, body.is_final_rejection
    )
    raise_for_result(result)
    return {"message": result.message, "issue": result.issue}


@router.post("/{issue_id}/process", response_model=ProcessOut)
async def process(
    issue_id: str,
    body: ProcessIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    gateway: StripeGateway = Depends(get_gateway),
    outbox: AccountingOutbox = Depends(get_outbox),
):
    result = await resolution.process_issue(
        db, issue_id, admin.id,
        gateway=gateway,
        outbox=outbox,
        refund_type=body.refund_type,
        notes=body.notes,
    )
    raise_for_result(result)
    return {
        "message": result.message,
        "reprint_order_id": result.reprint_order_id,
        "refund_amount": result.refund_amount,
        "issue": result.issue,
    }


@router.post("/{issue_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
    issue_id: str,
    body: MessageIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    result = await messages.send_admin_message(db, issue_id, admin.id, body.content, body.image_urls)
    raise_for_result(result)
    return result.message


@router.post("/{issue_id}/conclude", response_model=IssueOut)
async def conclude(
    issue_id: str,
    body: ConcludeIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    result = await resolution.conclude_issue(db, issue_id, admin.id, body.reason)
    raise_for_result(result)
    return result.issue


@router.post("/{issue_id}/reopen", response_model=IssueOut)
async def reopen(issue_id: str, db: AsyncSession = Depends(get_db), admin: User = Depends(require_admin)):
    result = await resolution.reopen_issue(db, issue_id, admin.id)
    raise_for_result(result)
    return result.issue
