# diploma_app/verification.py
import logging
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from web3 import Web3

from diploma_app.blockchain import ContractHandle, parse_token_id
from diploma_app.errors import ContractNotLoaded, InvalidAddress, RemoteCallFailed, describe_failure
from diploma_app.metadata import DiplomaCore

log = logging.getLogger("verification")

# (position, accepted names) of each field in getDiploma's result
RECORD_FIELDS = {
    "token_id": (0, ("tokenId",)),
    "holder": (1, ("holder",)),
    "revoked": (2, ("revoked",)),
    "revoke_reason": (3, ("revokeReason",)),
    "token_uri": (4, ("tokenURIString", "tokenURI")),
    "core": (5, ("core",)),
}
CORE_FIELDS = ("studentName", "course", "institution", "graduationDate")


@dataclass(frozen=True)
class DiplomaRecord:
    token_id: int
    holder: str
    revoked: bool
    revoke_reason: str  # only meaningful when revoked
    token_uri: str
    core: DiplomaCore


def _pick(value, position: int, names: tuple):
    """Named lookup when the result carries names, positional otherwise."""
    if hasattr(value, "_asdict"):
        value = value._asdict()
    if isinstance(value, Mapping):
        for name in names:
            if name in value:
                return value[name]
        value = list(value.values())
    return value[position]


def to_record(raw) -> DiplomaRecord:
    fields = {key: _pick(raw, pos, names) for key, (pos, names) in RECORD_FIELDS.items()}
    core_raw = fields.pop("core")
    core = DiplomaCore(*(str(_pick(core_raw, i, (name,))) for i, name in enumerate(CORE_FIELDS)))
    return DiplomaRecord(
        token_id=int(fields["token_id"]),
        holder=str(fields["holder"]),
        revoked=bool(fields["revoked"]),
        revoke_reason=str(fields["revoke_reason"]),
        token_uri=str(fields["token_uri"]),
        core=core,
    )


def _require(handle: Optional[ContractHandle]) -> ContractHandle:
    if handle is None:
        raise ContractNotLoaded("load the contract first")
    return handle


async def verify(handle: Optional[ContractHandle], token_id, account: Optional[str] = None) -> bool:
    """
    verifyDiploma(token_id), optionally combined with an ownership check.

    With an account on a contract exposing balanceOf, the diploma is valid
    only if it is not revoked *and* the account holds a positive balance.
    If the balance call itself fails, the revocation verdict stands alone.
    """
    handle = _require(handle)
    token_id = parse_token_id(token_id)
    try:
        valid = bool(await handle.contract.functions.verifyDiploma(token_id).call())
    except Exception as e:
        raise RemoteCallFailed(f"verification failed: {describe_failure(e, 'verifyDiploma call failed')}") from e

    if not account:
        return valid
    if not Web3.is_address(account):
        raise InvalidAddress("invalid holder address")
    if not handle.capabilities.balance_of:
        log.info("contract %s has no balanceOf; ownership not checked", handle.address)
        return valid

    try:
        balance = int(await handle.contract.functions.balanceOf(Web3.to_checksum_address(account), token_id).call())
    except Exception as e:
        log.warning("balanceOf(%s, %s) failed (%s); using revocation verdict only", account, token_id, e)
        return valid
    return valid and balance > 0


async def fetch(handle: Optional[ContractHandle], token_id) -> DiplomaRecord:
    handle = _require(handle)
    token_id = parse_token_id(token_id)
    try:
        raw = await handle.contract.functions.getDiploma(token_id).call()
    except Exception as e:
        raise RemoteCallFailed(f"failed to fetch diploma: {describe_failure(e, 'getDiploma call failed')}") from e
    record = to_record(raw)

    if not record.token_uri and handle.capabilities.uri:
        try:
            template = str(await handle.contract.functions.uri(token_id).call())
        except Exception as e:
            log.warning("uri(%s) failed: %s", token_id, e)
        else:
            # ERC-1155 id substitution: lowercase hex, zero-padded to 64 chars
            record = replace(record, token_uri=template.replace("{id}", f"{token_id:064x}"))
    return record
