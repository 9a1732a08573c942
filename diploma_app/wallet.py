# diploma_app/wallet.py
import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Protocol

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

from diploma_app.errors import (
    UNRECOGNIZED_CHAIN,
    NetworkSwitchFailed,
    NoProvider,
    NoWalletCapability,
    WalletRejected,
    WalletRequestError,
)
from diploma_app.settings import settings

log = logging.getLogger("wallet")

ACCOUNTS_CHANGED = "accountsChanged"
CHAIN_CHANGED = "chainChanged"

METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class WalletCapability(Protocol):
    """What the session needs from a wallet: EIP-1193 requests plus notifications."""

    w3: Any

    async def request(self, method: str, params: Optional[list] = None) -> Any: ...

    def on(self, event: str, listener: Callable[[Any], None]) -> None: ...

    def remove_listener(self, event: str, listener: Callable[[Any], None]) -> None: ...


class Web3Wallet:
    """
    Wallet capability over a web3 async provider.

    With a local account, account requests are answered from the key and
    transactions sent from it are signed by web3's signing middleware.
    Without one, the node's own (unlocked) accounts are used.
    """

    def __init__(self, w3: AsyncWeb3, account: Optional[LocalAccount] = None):
        self.w3 = w3
        self.account = account
        self._listeners = defaultdict(list)
        self._last_seen = {ACCOUNTS_CHANGED: None, CHAIN_CHANGED: None}
        if account is not None:
            w3.middleware_onion.inject(SignAndSendRawMiddlewareBuilder.build(account), layer=0)

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        if self.account is not None and method in ("eth_requestAccounts", "eth_accounts"):
            return [self.account.address]
        try:
            response = await self.w3.provider.make_request(method, params or [])
        except Exception as e:
            raise WalletRequestError(INTERNAL_ERROR, f"provider request failed: {e}") from e

        error = response.get("error")
        if error:
            if isinstance(error, dict):
                code = error.get("code", INTERNAL_ERROR)
                # plain nodes have no permission flow; their account list is the grant
                if method == "eth_requestAccounts" and code == METHOD_NOT_FOUND:
                    return await self.request("eth_accounts")
                raise WalletRequestError(code, error.get("message", ""))
            raise WalletRequestError(INTERNAL_ERROR, str(error))
        return response.get("result")

    def on(self, event: str, listener: Callable[[Any], None]) -> None:
        self._listeners[event].append(listener)

    def remove_listener(self, event: str, listener: Callable[[Any], None]) -> None:
        if listener in self._listeners[event]:
            self._listeners[event].remove(listener)

    def emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners[event]):
            listener(payload)

    async def poll(self) -> None:
        """Emit a notification for accounts or chain id that changed since the last poll."""
        current = {
            ACCOUNTS_CHANGED: await self.request("eth_accounts"),
            CHAIN_CHANGED: await self.request("eth_chainId"),
        }
        for event, value in current.items():
            if value != self._last_seen[event]:
                self._last_seen[event] = value
                self.emit(event, value)


@dataclass(frozen=True)
class NetworkDescriptor:
    chain_id: int
    chain_name: str
    currency_name: str
    currency_symbol: str
    currency_decimals: int
    rpc_urls: tuple
    block_explorer_urls: tuple

    @property
    def chain_id_hex(self) -> str:
        return hex(self.chain_id)

    def add_chain_params(self) -> dict:
        return {
            "chainId": self.chain_id_hex,
            "chainName": self.chain_name,
            "nativeCurrency": {
                "name": self.currency_name,
                "symbol": self.currency_symbol,
                "decimals": self.currency_decimals,
            },
            "rpcUrls": list(self.rpc_urls),
            "blockExplorerUrls": list(self.block_explorer_urls),
        }

    @classmethod
    def from_settings(cls, s=settings) -> "NetworkDescriptor":
        return cls(
            chain_id=s.TARGET_CHAIN_ID,
            chain_name=s.TARGET_CHAIN_NAME,
            currency_name=s.NATIVE_CURRENCY_NAME,
            currency_symbol=s.NATIVE_CURRENCY_SYMBOL,
            currency_decimals=s.NATIVE_CURRENCY_DECIMALS,
            rpc_urls=(s.TARGET_CHAIN_RPC_URL,),
            block_explorer_urls=(s.TARGET_CHAIN_EXPLORER_URL,),
        )


@dataclass(frozen=True)
class WalletState:
    has_capability: bool = False
    account: str = ""
    network_id: str = ""


class WalletSession:
    """
    Mirrors the wallet's selected account and network.

    The state is replaced only by wallet notifications or by the results of
    requests made to the wallet; nothing here asserts an account or chain.
    """

    def __init__(self, capability: Optional[WalletCapability]):
        self.capability = capability
        self.state = WalletState()
        self._listening = False

    @property
    def w3(self):
        return getattr(self.capability, "w3", None) if self.capability is not None else None

    async def detect_capability(self) -> bool:
        self.state = replace(self.state, has_capability=self.capability is not None)
        if self.capability is None:
            log.info("no wallet capability detected")
            return False

        if not self._listening:
            self.capability.on(ACCOUNTS_CHANGED, self._on_accounts)
            self.capability.on(CHAIN_CHANGED, self._on_chain)
            self._listening = True

        try:
            self._on_accounts(await self.capability.request("eth_accounts"))
            self._on_chain(await self.capability.request("eth_chainId"))
        except WalletRequestError as e:
            log.warning("could not read initial wallet state: %s", e.message)
        return True

    def close(self) -> None:
        if self.capability is not None and self._listening:
            self.capability.remove_listener(ACCOUNTS_CHANGED, self._on_accounts)
            self.capability.remove_listener(CHAIN_CHANGED, self._on_chain)
            self._listening = False

    def _on_accounts(self, accounts) -> None:
        account = Web3.to_checksum_address(accounts[0]) if accounts else ""
        if account != self.state.account:
            log.info("account changed: %s", account or "<none>")
        self.state = replace(self.state, account=account)

    def _on_chain(self, chain_id) -> None:
        if isinstance(chain_id, int):
            chain_id = hex(chain_id)
        chain_id = chain_id or ""
        if chain_id != self.state.network_id:
            log.info("network changed: %s", chain_id or "<none>")
        self.state = replace(self.state, network_id=chain_id)

    async def connect(self) -> str:
        if self.capability is None:
            raise NoWalletCapability("no wallet capability detected")
        try:
            accounts = await self.capability.request("eth_requestAccounts")
        except WalletRequestError as e:
            raise WalletRejected(f"failed to connect: {e.message}") from e
        if not accounts:
            raise WalletRejected("failed to connect: wallet returned no accounts")
        self._on_accounts(accounts)
        return self.state.account

    async def ensure_network(self, target: NetworkDescriptor) -> str:
        if self.capability is None:
            raise NoWalletCapability("no wallet capability detected")
        try:
            await self.capability.request("wallet_switchEthereumChain", [{"chainId": target.chain_id_hex}])
        except WalletRequestError as e:
            if e.code != UNRECOGNIZED_CHAIN:
                raise NetworkSwitchFailed(f"failed to switch network: {e.message}") from e
            log.info("chain %s unknown to wallet, requesting add", target.chain_id_hex)
            # adding the chain also selects it
            try:
                await self.capability.request("wallet_addEthereumChain", [target.add_chain_params()])
            except WalletRequestError as add_err:
                raise NetworkSwitchFailed(f"failed to add network: {add_err.message}") from add_err
        return await self.resolve_network()

    async def resolve_account(self) -> str:
        """Re-read the selected account from the wallet right now."""
        if self.capability is None:
            raise NoWalletCapability("no wallet capability detected")
        try:
            self._on_accounts(await self.capability.request("eth_accounts"))
        except WalletRequestError as e:
            raise NoProvider(f"wallet unavailable: {e.message}") from e
        return self.state.account

    async def resolve_network(self) -> str:
        if self.capability is None:
            raise NoWalletCapability("no wallet capability detected")
        try:
            self._on_chain(await self.capability.request("eth_chainId"))
        except WalletRequestError as e:
            raise NoProvider(f"wallet unavailable: {e.message}") from e
        return self.state.network_id
