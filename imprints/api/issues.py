# imprints/api/issues.py
# Customer issue routes: list, detail, report, messages, appeal, withdraw.
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from imprints.api.deps import raise_for_result
from imprints.api.schemas import (
    AppealIn, CustomerIssuesOut, IssueDetailOut, IssueOut, MessageIn, MessageOut, ReportIssueIn,
)
from imprints.core.security import get_current_user, get_db
from imprints.models.user import User
from imprints.services.issues import issue_service, messages, stats

router = APIRouter()


@router.get("", response_model=CustomerIssuesOut)
async def list_my_issues(db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    return await stats.get_customer_issues(db, user.id)


@router.get("/unread-count")
async def my_unread_count(db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    return {"unread": await stats.get_customer_unread_count(db, user.id)}


@router.post("", response_model=IssueOut, status_code=status.HTTP_201_CREATED)
async def report_issue(
    body: ReportIssueIn,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = await issue_service.report_issue(
        db, body.order_id, body.item_id, user.id, body.reason, body.notes, body.image_urls
    )
    raise_for_result(result)
    return result.issue


@router.get("/{issue_id}", response_model=IssueDetailOut)
async def get_my_issue(issue_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    """Issue detail; admin messages are marked read."""
    result = await issue_service.get_customer_issue(db, issue_id, user.id)
    raise_for_result(result)
    return result.issue


@router.post("/{issue_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
    issue_id: str,
    body: MessageIn,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = await messages.send_customer_message(db, issue_id, user.id, body.content, body.image_urls)
    raise_for_result(result)
    return result.message


@router.post("/{issue_id}/appeal")
async def appeal(
    issue_id: str,
    body: AppealIn,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = await messages.appeal_issue(db, issue_id, user.id, body.reason, body.image_urls)
    raise_for_result(result)
    return {"success": True, "message": "Your appeal has been submitted and will be reviewed."}


@router.delete("/{issue_id}")
async def withdraw(issue_id: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    result = await issue_service.withdraw_issue(db, issue_id, user.id)
    raise_for_result(result)
    return {"success": True}
