"""diploma_app.errors

Every failure a caller can see. None of them end the session: the HTTP layer
turns them into an error body and the next request proceeds normally.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

UNRECOGNIZED_CHAIN = 4902
USER_REJECTED = 4001


class WalletRequestError(Exception):
    """A wallet capability request failed with a numeric reason code."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = int(code)
        self.message = message


class DiplomaError(Exception):
    code = "diploma_error"
    status = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NoWalletCapability(DiplomaError):
    code = "no_wallet"
    status = 503


class WalletRejected(DiplomaError):
    code = "wallet_rejected"
    status = 403


class InvalidAddress(DiplomaError):
    code = "invalid_address"
    status = 400


class NoProvider(DiplomaError):
    code = "no_provider"
    status = 503


class UnauthorizedAccount(DiplomaError):
    code = "unauthorized"
    status = 403


class NetworkSwitchFailed(DiplomaError):
    code = "network_switch_failed"
    status = 502


class RemoteCallFailed(DiplomaError):
    code = "remote_call_failed"
    status = 502


class InclusionFailed(DiplomaError):
    code = "inclusion_failed"
    status = 502


class ContractNotLoaded(DiplomaError):
    code = "contract_not_loaded"
    status = 409


class MissingField(DiplomaError):
    code = "missing_field"
    status = 400


class ActionInProgress(DiplomaError):
    code = "action_in_progress"
    status = 409


class PinningFailed(DiplomaError):
    code = "pin_failed"
    status = 502


def describe_failure(exc: BaseException, fallback: str) -> str:
    """Shortest useful reason for a remote failure.

    web3 contract errors carry the revert reason in ``message``; anything
    else falls back to its string form, then to ``fallback``.
    """
    msg = getattr(exc, "message", None)
    if isinstance(msg, str) and msg:
        return msg
    return str(exc) or fallback


async def diploma_error_handler(request: Request, exc: DiplomaError) -> JSONResponse:
    body = {"error": {"code": exc.code, "message": exc.message}}
    return JSONResponse(status_code=exc.status, content=body)
