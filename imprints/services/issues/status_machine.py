# imprints/services/issues/status_machine.py
# Issue status groups and helpers.
#
# SUBMITTED -> AWAITING_REVIEW <-> INFO_REQUESTED
#   -> APPROVED_REPRINT | APPROVED_REFUND | REJECTED
#   -> PROCESSING -> COMPLETED
# REJECTED returns to AWAITING_REVIEW through an appeal until the rejection is final.
# Stale INFO_REQUESTED issues are auto-closed (CLOSED).
from imprints.models.issue import IssueStatus

I = IssueStatus

WITHDRAWABLE_STATUSES = frozenset({I.SUBMITTED, I.AWAITING_REVIEW})
REVIEWABLE_STATUSES = frozenset({I.AWAITING_REVIEW, I.INFO_REQUESTED})
PENDING_STATUSES = frozenset({I.AWAITING_REVIEW, I.INFO_REQUESTED})
RESOLVED_STATUSES = frozenset({I.COMPLETED, I.CLOSED})
# admin messages are refused once the issue is closed
CLOSED_STATUSES = frozenset({I.COMPLETED, I.CLOSED})
PROCESSABLE_STATUSES = frozenset({I.APPROVED_REPRINT, I.APPROVED_REFUND})
NEEDS_ATTENTION_STATUSES = frozenset({I.AWAITING_REVIEW, I.APPROVED_REPRINT, I.APPROVED_REFUND})

# a concluded issue only accepts reopen
CONCLUDED_ERROR = "Issue is concluded; reopen it first"


def can_withdraw(status: IssueStatus) -> bool:
    return status in WITHDRAWABLE_STATUSES


def can_review(status: IssueStatus) -> bool:
    return status in REVIEWABLE_STATUSES


def is_pending(status: IssueStatus) -> bool:
    return status in PENDING_STATUSES


def is_resolved(status: IssueStatus) -> bool:
    return status in RESOLVED_STATUSES


def can_process(status: IssueStatus) -> bool:
    return status in PROCESSABLE_STATUSES


def is_closed(status: IssueStatus) -> bool:
    return status in CLOSED_STATUSES
