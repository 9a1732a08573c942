from __future__ import annotations

import sys
from collections import defaultdict
from pathlib import Path
from typing import Any

import pytest
from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

# pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from diploma_app.blockchain import Capabilities, ContractHandle, load_abi  # noqa: E402
from diploma_app.errors import WalletRequestError  # noqa: E402
from diploma_app.metadata import DiplomaCore  # noqa: E402

ALICE = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
BOB = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
ZERO = "0x0000000000000000000000000000000000000000"
TX_HASH = HexBytes("0x" + "ab" * 32)
ROLE = bytes(Web3.keccak(text="INSTITUTION_ROLE"))

CORE = DiplomaCore("Ada Lovelace", "Mathematics", "University of London", "1843-12-10")


class FakeWallet:
    """Scripted wallet capability. `errors` maps a method to the error it raises."""

    def __init__(self, *, accounts=(ALICE,), chain_id="0x1", w3: Any = None, errors=None):
        self.accounts = list(accounts)
        self.chain_id = chain_id
        self.w3 = w3
        self.errors = dict(errors or {})
        self.calls: list[tuple[str, Any]] = []
        self.listeners = defaultdict(list)

    async def request(self, method: str, params=None) -> Any:
        self.calls.append((method, params))
        if method in self.errors:
            raise self.errors[method]
        if method in ("eth_requestAccounts", "eth_accounts"):
            return list(self.accounts)
        if method == "eth_chainId":
            return self.chain_id
        if method in ("wallet_switchEthereumChain", "wallet_addEthereumChain"):
            self.chain_id = params[0]["chainId"]
            return None
        raise WalletRequestError(-32601, f"method {method} not supported")

    def on(self, event, listener) -> None:
        self.listeners[event].append(listener)

    def remove_listener(self, event, listener) -> None:
        self.listeners[event].remove(listener)

    def emit(self, event, payload) -> None:
        for listener in list(self.listeners[event]):
            listener(payload)

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)


class FakeCall:
    def __init__(self, contract: FakeContract, name: str, args: tuple):
        self.contract = contract
        self.name = name
        self.args = args

    def _result(self, default=KeyError):
        if self.name not in self.contract.results and default is KeyError:
            raise KeyError(f"{self.name} not scripted")
        result = self.contract.results.get(self.name, default)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(*self.args)
        return result

    async def call(self) -> Any:
        self.contract.calls.append((self.name, self.args))
        return self._result()

    async def transact(self, tx=None) -> Any:
        self.contract.transactions.append((self.name, self.args, tx))
        return self._result(default=TX_HASH)


class _Functions:
    def __init__(self, contract: FakeContract):
        self._contract = contract

    def __getattr__(self, name: str):
        return lambda *args: FakeCall(self._contract, name, args)


class FakeContract:
    """Contract functions whose results are scripted by name (value, callable or exception)."""

    def __init__(self, **results: Any):
        self.address = CONTRACT
        self.results = results
        self.calls: list[tuple[str, tuple]] = []
        self.transactions: list[tuple[str, tuple, Any]] = []
        self.functions = _Functions(self)


class FakeEth:
    def __init__(self, contract: FakeContract | None = None, receipt: Any = None):
        self.contract_obj = contract
        self.receipt = receipt if receipt is not None else {"status": 1, "logs": []}
        self.built: list[tuple[str, list]] = []
        self.waited: list[Any] = []

    def contract(self, address=None, abi=None):
        self.built.append((address, abi))
        return self.contract_obj

    async def wait_for_transaction_receipt(self, tx_hash, timeout=None):
        self.waited.append((tx_hash, timeout))
        if isinstance(self.receipt, Exception):
            raise self.receipt
        return self.receipt


class FakeW3:
    def __init__(self, eth: FakeEth):
        self.eth = eth


def make_handle(contract: FakeContract, *, variant="erc721", receipt=None, signer=ALICE, role_id=ROLE) -> ContractHandle:
    abi = load_abi(variant)
    return ContractHandle(
        address=CONTRACT,
        abi=abi,
        signer=signer,
        contract=contract,
        w3=FakeW3(FakeEth(contract, receipt)),
        capabilities=Capabilities.from_abi(abi),
        role_id=role_id,
    )


# receipt log builders


def _topic(sig: str) -> HexBytes:
    return HexBytes(Web3.keccak(text=sig))


def _word(typ: str, value: Any) -> HexBytes:
    return HexBytes(encode([typ], [value]))


def make_log(topics: list, data: bytes = b"", index: int = 0) -> dict:
    return {
        "address": CONTRACT,
        "topics": topics,
        "data": HexBytes(data),
        "logIndex": index,
        "transactionIndex": 0,
        "transactionHash": TX_HASH,
        "blockHash": HexBytes("0x" + "11" * 32),
        "blockNumber": 1,
    }


def diploma_issued_log(token_id: int, to: str = BOB, uri: str = "ipfs://cid", index: int = 0) -> dict:
    topics = [_topic("DiplomaIssued(uint256,address,string)"), _word("uint256", token_id), _word("address", to)]
    return make_log(topics, encode(["string"], [uri]), index)


def transfer_single_log(token_id: int, sender: str = ZERO, to: str = BOB, operator: str = ALICE, index: int = 0) -> dict:
    topics = [
        _topic("TransferSingle(address,address,address,uint256,uint256)"),
        _word("address", operator),
        _word("address", sender),
        _word("address", to),
    ]
    return make_log(topics, encode(["uint256", "uint256"], [token_id, 1]), index)


def transfer_log(token_id: int, sender: str = ZERO, to: str = BOB, index: int = 0) -> dict:
    topics = [
        _topic("Transfer(address,address,uint256)"),
        _word("address", sender),
        _word("address", to),
        _word("uint256", token_id),
    ]
    return make_log(topics, b"", index)


def unrelated_log(index: int = 0) -> dict:
    topics = [_topic("RoleGranted(bytes32,address,address)"), HexBytes(ROLE), _word("address", ALICE), _word("address", BOB)]
    return make_log(topics, b"", index)


@pytest.fixture()
def wallet() -> FakeWallet:
    return FakeWallet()
