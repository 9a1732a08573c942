# diploma_app/blockchain.py
import json
import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Optional

from hexbytes import HexBytes
from web3 import Web3

from diploma_app.errors import ContractNotLoaded, InvalidAddress, MissingField, NoProvider, WalletRejected
from diploma_app.wallet import WalletSession

log = logging.getLogger("blockchain")

# load ABIs shipped with the package
HERE = os.path.dirname(__file__)
ARTIFACTS_DIR = os.path.join(HERE, "artifacts")
ARTIFACTS = {
    "erc721": "DiplomaNFT.json",
    "erc1155": "DiplomaNFT1155.json",
}

INSTITUTION_ROLE_NAME = "INSTITUTION_ROLE"


def load_abi(variant: str = "erc721") -> list:
    try:
        filename = ARTIFACTS[variant]
    except KeyError:
        raise ValueError(f"unknown contract variant {variant!r}; expected one of {sorted(ARTIFACTS)}")
    with open(os.path.join(ARTIFACTS_DIR, filename)) as f:
        artifact = json.load(f)
    if isinstance(artifact, dict):
        return artifact.get("abi", [])
    return artifact  # file is just the abi array


@dataclass(frozen=True)
class Capabilities:
    """Optional calls a deployed variant exposes beyond the shared diploma interface."""

    balance_of: bool = False
    uri: bool = False

    @classmethod
    def from_abi(cls, abi: list) -> "Capabilities":
        names = {entry.get("name") for entry in abi if entry.get("type") == "function"}
        return cls(balance_of="balanceOf" in names, uri="uri" in names)


@dataclass(frozen=True)
class ContractHandle:
    address: str
    abi: list
    signer: str
    contract: Any
    w3: Any
    capabilities: Capabilities
    role_id: Optional[bytes] = None

    @property
    def role_id_hex(self) -> str:
        return "0x" + bytes(self.role_id).hex() if self.role_id is not None else ""


def _role_bytes32(value) -> bytes:
    """Normalize a role read from the contract; anything that is not 32 bytes is rejected."""
    if isinstance(value, str):
        value = HexBytes(value)
    b = bytes(value)
    if len(b) != 32:
        raise ValueError(f"expected 32-byte role id, got {len(b)} bytes")
    return b


def parse_token_id(value) -> int:
    if value is None or value == "":
        raise MissingField("token id is required")
    try:
        token_id = int(value)
    except (TypeError, ValueError):
        raise MissingField(f"token id must be an integer, got {value!r}")
    if token_id < 0:
        raise MissingField("token id must be non-negative")
    return token_id


async def resolve_access_role(handle: ContractHandle) -> bytes:
    """
    Role id for INSTITUTION_ROLE. Reads the contract constant; when that call
    is unavailable, falls back to keccak256("INSTITUTION_ROLE"). Never raises.
    """
    try:
        return _role_bytes32(await handle.contract.functions.INSTITUTION_ROLE().call())
    except Exception as e:
        log.warning("INSTITUTION_ROLE() unavailable on %s (%s); using keccak fallback", handle.address, e)
        return bytes(Web3.keccak(text=INSTITUTION_ROLE_NAME))


class ContractBinding:
    """
    Owns the handle for the contract currently in use.

    A handle is never mutated: a new bind, or an account switch noticed by
    current(), replaces it with a freshly built one.
    """

    def __init__(self, session: WalletSession):
        self.session = session
        self.handle: Optional[ContractHandle] = None

    async def bind(self, address: str, abi: list) -> ContractHandle:
        if not isinstance(address, str) or not Web3.is_address(address):
            raise InvalidAddress("invalid contract address")
        w3 = self.session.w3
        if not self.session.state.has_capability or w3 is None:
            raise NoProvider("provider not available")

        account = await self.session.resolve_account()
        if not account:
            raise WalletRejected("no account selected; connect the wallet first")

        checksum = Web3.to_checksum_address(address)
        handle = ContractHandle(
            address=checksum,
            abi=abi,
            signer=account,
            contract=w3.eth.contract(address=checksum, abi=abi),
            w3=w3,
            capabilities=Capabilities.from_abi(abi),
        )
        handle = replace(handle, role_id=await resolve_access_role(handle))
        self.handle = handle
        log.info("bound %s as %s (role %s)", checksum, account, handle.role_id_hex)
        return handle

    async def current(self) -> ContractHandle:
        """The bound handle, rebuilt first if the wallet's account moved since bind."""
        if self.handle is None:
            raise ContractNotLoaded("load the contract first")
        account = await self.session.resolve_account()
        if account != self.handle.signer:
            log.info("account switched from %s to %s; rebinding", self.handle.signer, account or "<none>")
            return await self.bind(self.handle.address, self.handle.abi)
        return self.handle

    def unbind(self) -> None:
        self.handle = None
