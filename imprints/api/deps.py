# imprints/api/deps.py
# Router helpers: service collaborators from app.state and result -> HTTP errors.
from fastapi import HTTPException, Request, status

from imprints.services.outbox import AccountingOutbox
from imprints.services.results import ErrorKind, ServiceResult
from imprints.services.stripe_gateway import StripeGateway

ERROR_STATUS_CODES = {
    ErrorKind.validation: status.HTTP_400_BAD_REQUEST,
    ErrorKind.not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.forbidden: status.HTTP_403_FORBIDDEN,
    ErrorKind.conflict: status.HTTP_409_CONFLICT,
    ErrorKind.external_service: status.HTTP_502_BAD_GATEWAY,
}


def raise_for_result(result: ServiceResult) -> None:
    """Turns a failed service result into an HTTPException."""
    if result.success:
        return
    code = ERROR_STATUS_CODES.get(result.error_kind, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=code, detail=result.error)


def get_gateway(request: Request) -> StripeGateway:
    return request.app.state.gateway


def get_outbox(request: Request) -> AccountingOutbox:
    return request.app.state.outbox
