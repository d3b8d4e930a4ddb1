# imprints/services/results.py
# Result models returned by the services. Expected business-rule failures are
# returned as success=False with an error kind, never raised.
import enum
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorKind(str, enum.Enum):
    validation = "validation"
    not_found = "not_found"
    forbidden = "forbidden"
    conflict = "conflict"
    external_service = "external_service"


class ServiceResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def fail(cls, kind: ErrorKind, error: str, **extra):
        return cls(success=False, error=error, error_kind=kind, **extra)


class IssueOperationResult(ServiceResult):
    issue: Any = None


class ReviewResult(IssueOperationResult):
    message: str = ""


class ProcessResult(IssueOperationResult):
    message: str = ""
    reprint_order_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None


class MessageOperationResult(ServiceResult):
    message: Any = None


class TransitionResult(ServiceResult):
    previous_status: Optional[str] = None
    new_status: Optional[str] = None


class ReportIssueResult(IssueOperationResult):
    message: str = ""


class StaleIssuesResult(ServiceResult):
    closed_count: int = 0
    issue_ids: list[str] = []
