# diploma_app/access.py
import logging
from typing import Optional

from diploma_app.blockchain import ContractHandle
from diploma_app.errors import ContractNotLoaded, UnauthorizedAccount

log = logging.getLogger("access")


async def is_granted(handle: Optional[ContractHandle], role_id: Optional[bytes], account: str) -> bool:
    """
    hasRole(role_id, account), evaluated on every call.
    Fails closed: any problem completing the check means "not granted".
    """
    if handle is None or role_id is None or not account:
        return False
    try:
        return bool(await handle.contract.functions.hasRole(role_id, account).call())
    except Exception as e:
        log.warning("hasRole check failed for %s: %s", account, e)
        return False


async def require_institution(handle: Optional[ContractHandle]) -> None:
    if handle is None:
        raise ContractNotLoaded("load the contract first")
    if not await is_granted(handle, handle.role_id, handle.signer):
        raise UnauthorizedAccount(f"account {handle.signer} does not hold INSTITUTION_ROLE")
