# diploma_app/transactions.py
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from web3 import Web3

from diploma_app.access import require_institution
from diploma_app.blockchain import ContractHandle, parse_token_id
from diploma_app.errors import (
    ActionInProgress,
    InclusionFailed,
    InvalidAddress,
    MissingField,
    RemoteCallFailed,
    describe_failure,
)
from diploma_app.metadata import DiplomaCore
from diploma_app.settings import settings

log = logging.getLogger("transactions")

# well-known mint shapes, tried after the contract's own DiplomaIssued
TRANSFER_SINGLE_EVENT = {
    "type": "event",
    "name": "TransferSingle",
    "anonymous": False,
    "inputs": [
        {"indexed": True, "name": "operator", "type": "address"},
        {"indexed": True, "name": "from", "type": "address"},
        {"indexed": True, "name": "to", "type": "address"},
        {"indexed": False, "name": "id", "type": "uint256"},
        {"indexed": False, "name": "value", "type": "uint256"},
    ],
}
TRANSFER_EVENT = {
    "type": "event",
    "name": "Transfer",
    "anonymous": False,
    "inputs": [
        {"indexed": True, "name": "from", "type": "address"},
        {"indexed": True, "name": "to", "type": "address"},
        {"indexed": True, "name": "tokenId", "type": "uint256"},
    ],
}
FALLBACK_EVENTS = [TRANSFER_SINGLE_EVENT, TRANSFER_EVENT]

# decoding only; never sends a request
_offline_w3 = Web3()


class TxState(str, Enum):
    BUILT = "built"
    SUBMITTED = "submitted"
    INCLUDED = "included"
    FAILED = "failed"


_TRANSITIONS = {
    TxState.BUILT: {TxState.SUBMITTED, TxState.FAILED},
    TxState.SUBMITTED: {TxState.INCLUDED, TxState.FAILED},
    TxState.INCLUDED: set(),
    TxState.FAILED: set(),
}


@dataclass
class Transaction:
    action: str
    state: TxState = TxState.BUILT
    tx_hash: Optional[str] = None
    reason: Optional[str] = None

    def advance(self, state: TxState, **changes) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"{self.action}: illegal transition {self.state.value} -> {state.value}")
        for key, value in changes.items():
            setattr(self, key, value)
        self.state = state
        if state is TxState.FAILED:
            log.warning("%s %s: %s", self.action, state.value, self.reason)
        else:
            log.info("%s %s %s", self.action, state.value, self.tx_hash or "")


@dataclass(frozen=True)
class TransactionOutcome:
    tx_hash: str
    extracted_id: Optional[int]
    receipt: Any


@dataclass(frozen=True)
class EventDecoder:
    """Reads a token id out of one event shape; mint_only skips transfers from a holder."""

    event: str
    id_field: str
    mint_only: bool = False

    def token_id(self, events, log_entry) -> Optional[int]:
        args = getattr(events, self.event)().process_log(log_entry)["args"]
        if self.mint_only and int(args["from"], 16) != 0:
            return None
        value = args.get(self.id_field)
        return int(value) if value is not None else None


DECODERS = (
    EventDecoder("DiplomaIssued", "tokenId"),
    EventDecoder("TransferSingle", "id", mint_only=True),
    EventDecoder("Transfer", "tokenId", mint_only=True),
)


def _event_abis(abi: list) -> list:
    events = {entry["name"]: entry for entry in FALLBACK_EVENTS}
    events.update({entry["name"]: entry for entry in abi if entry.get("type") == "event"})
    return list(events.values())


def extract_token_id(abi: list, receipt, decoders=DECODERS) -> Optional[int]:
    """
    First decoder (in order) that matches any log wins. A log that does not
    decode under a shape is just skipped; no match at all returns None.
    """
    events = _offline_w3.eth.contract(abi=_event_abis(abi)).events
    logs = receipt.get("logs") or []
    for decoder in decoders:
        for entry in logs:
            try:
                token_id = decoder.token_id(events, entry)
            except Exception:
                continue
            if token_id is not None:
                return token_id
    return None


def _hex(value) -> str:
    if isinstance(value, str):
        return value
    return "0x" + bytes(value).hex()


async def _send_and_wait(handle: ContractHandle, tx: Transaction, call):
    try:
        tx_hash = await call.transact({"from": handle.signer})
    except Exception as e:
        reason = describe_failure(e, f"{tx.action} submission failed")
        tx.advance(TxState.FAILED, reason=reason)
        raise RemoteCallFailed(f"{tx.action} failed: {reason}") from e
    tx.advance(TxState.SUBMITTED, tx_hash=_hex(tx_hash))

    try:
        receipt = await handle.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=settings.RECEIPT_TIMEOUT)
    except Exception as e:
        reason = describe_failure(e, f"{tx.action} was not included")
        tx.advance(TxState.FAILED, reason=reason)
        raise InclusionFailed(f"{tx.action} failed: {reason}") from e

    if receipt.get("status") == 0:
        tx.advance(TxState.FAILED, reason="transaction reverted")
        raise InclusionFailed(f"{tx.action} failed: transaction {tx.tx_hash} reverted")
    tx.advance(TxState.INCLUDED)
    return receipt


async def submit_mint(handle: Optional[ContractHandle], to: str, metadata_uri: str, core: DiplomaCore) -> TransactionOutcome:
    await require_institution(handle)
    if not isinstance(to, str) or not Web3.is_address(to):
        raise InvalidAddress("invalid student address")
    if not metadata_uri:
        raise MissingField("metadata URI is required (or generate it from the diploma core)")

    tx = Transaction("mint")
    call = handle.contract.functions.mintDiploma(Web3.to_checksum_address(to), metadata_uri, core.as_tuple())
    receipt = await _send_and_wait(handle, tx, call)

    token_id = extract_token_id(handle.abi, receipt)
    if token_id is None:
        log.warning("mint %s included but no token id found in its logs", tx.tx_hash)
    return TransactionOutcome(tx_hash=tx.tx_hash, extracted_id=token_id, receipt=receipt)


async def submit_revoke(handle: Optional[ContractHandle], token_id, reason: str = "") -> TransactionOutcome:
    await require_institution(handle)
    token_id = parse_token_id(token_id)

    tx = Transaction("revoke")
    call = handle.contract.functions.revokeDiploma(token_id, reason or settings.DEFAULT_REVOKE_REASON)
    receipt = await _send_and_wait(handle, tx, call)
    return TransactionOutcome(tx_hash=tx.tx_hash, extracted_id=None, receipt=receipt)


class SingleFlight:
    """At most one outstanding invocation per action name."""

    def __init__(self):
        self._running = set()

    def running(self, action: str) -> bool:
        return action in self._running

    @asynccontextmanager
    async def guard(self, action: str):
        if action in self._running:
            raise ActionInProgress(f"{action} already in progress")
        self._running.add(action)
        try:
            yield
        finally:
            self._running.discard(action)
