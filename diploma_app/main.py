# diploma_app/main.py
import logging
from typing import Optional

import uvicorn
from apscheduler.schedulers import SchedulerAlreadyRunningError
from eth_account import Account
from fastapi import APIRouter, FastAPI, HTTPException, Request
from web3 import AsyncHTTPProvider, AsyncWeb3

from .access import is_granted
from .blockchain import ContractBinding, ContractHandle, load_abi
from .errors import DiplomaError, diploma_error_handler
from .metadata import encode, to_display_url
from .pinata import pin_metadata
from .schemas import (
    BindIn,
    BindOut,
    DiplomaCoreIn,
    DiplomaOut,
    MetadataIn,
    MetadataOut,
    MintIn,
    RevokeIn,
    TxOut,
    VerifyOut,
    WalletOut,
)
from .settings import settings
from .tasks import build_scheduler
from .transactions import SingleFlight, submit_mint, submit_revoke
from .verification import fetch, verify
from .wallet import NetworkDescriptor, WalletSession, Web3Wallet

logging.basicConfig(level=settings.LOG_LEVEL)
log = logging.getLogger("main")

_AUTO = object()

router = APIRouter()


def default_wallet() -> Web3Wallet:
    w3 = AsyncWeb3(AsyncHTTPProvider(settings.RPC_URL))
    account = Account.from_key(settings.WALLET_PK) if settings.WALLET_PK else None
    return Web3Wallet(w3, account)


def _wallet_out(session: WalletSession) -> WalletOut:
    s = session.state
    return WalletOut(has_capability=s.has_capability, account=s.account or None, network_id=s.network_id or None)


async def _bind_out(handle: ContractHandle) -> BindOut:
    # evaluated on every response; never served from the bind-time result
    granted = await is_granted(handle, handle.role_id, handle.signer)
    return BindOut(
        address=handle.address,
        signer=handle.signer,
        role_id=handle.role_id_hex,
        is_institution=granted,
        balance_of=handle.capabilities.balance_of,
        uri=handle.capabilities.uri,
    )


@router.get("/wallet", response_model=WalletOut)
async def wallet_state(request: Request):
    return _wallet_out(request.app.state.session)


@router.post("/wallet/connect", response_model=WalletOut)
async def connect_wallet(request: Request):
    session = request.app.state.session
    await session.connect()
    return _wallet_out(session)


@router.post("/wallet/network", response_model=WalletOut)
async def switch_network(request: Request):
    session = request.app.state.session
    await session.ensure_network(NetworkDescriptor.from_settings())
    return _wallet_out(session)


@router.post("/contract", response_model=BindOut)
async def load_contract(data: BindIn, request: Request):
    try:
        abi = load_abi(data.variant)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    handle = await request.app.state.binding.bind(data.address, abi)
    return await _bind_out(handle)


@router.get("/contract", response_model=BindOut)
async def contract_state(request: Request):
    handle = await request.app.state.binding.current()
    return await _bind_out(handle)


@router.post("/metadata", response_model=MetadataOut)
def build_metadata_uri(data: MetadataIn):
    """
    Token URI for a diploma: an inline data URI, or an ipfs:// URI when pinned.
    Plain def so the blocking Pinata upload runs in the threadpool.
    """
    core = data.core.to_core()
    uri = pin_metadata(core, data.extra) if data.pin else encode(core, data.extra)
    return MetadataOut(uri=uri, display_url=to_display_url(uri, settings.IPFS_GATEWAY))


@router.post("/diplomas", response_model=TxOut)
async def mint_diploma(data: MintIn, request: Request):
    state = request.app.state
    async with state.flights.guard("mint"):
        handle = await state.binding.current()
        core = data.core.to_core()
        uri = data.metadata_uri
        if not uri and data.generate_metadata:
            uri = encode(core, data.extra)
        outcome = await submit_mint(handle, data.to, uri, core)
    return TxOut(tx=outcome.tx_hash, token_id=outcome.extracted_id)


@router.get("/diplomas/{token_id}", response_model=DiplomaOut)
async def get_diploma(token_id: int, request: Request):
    handle = await request.app.state.binding.current()
    record = await fetch(handle, token_id)
    return DiplomaOut(
        token_id=record.token_id,
        holder=record.holder,
        revoked=record.revoked,
        revoke_reason=record.revoke_reason if record.revoked else None,
        token_uri=record.token_uri,
        display_url=to_display_url(record.token_uri, settings.IPFS_GATEWAY),
        core=DiplomaCoreIn.from_core(record.core),
    )


@router.get("/diplomas/{token_id}/verify", response_model=VerifyOut)
async def verify_diploma(token_id: int, request: Request, account: Optional[str] = None):
    handle = await request.app.state.binding.current()
    valid = await verify(handle, token_id, account)
    return VerifyOut(token_id=token_id, account=account, valid=valid)


@router.post("/diplomas/{token_id}/revoke", response_model=TxOut)
async def revoke_diploma(token_id: int, data: RevokeIn, request: Request):
    state = request.app.state
    async with state.flights.guard("revoke"):
        handle = await state.binding.current()
        outcome = await submit_revoke(handle, token_id, data.reason)
    return TxOut(tx=outcome.tx_hash)


def create_app(wallet=_AUTO) -> FastAPI:
    """
    wallet: a wallet capability, None for "no wallet present", or omitted to
    build a Web3Wallet from settings.
    """
    if wallet is _AUTO:
        wallet = default_wallet()

    app = FastAPI(title="Diploma dApp Backend")
    app.state.wallet = wallet
    app.state.session = WalletSession(wallet)
    app.state.binding = ContractBinding(app.state.session)
    app.state.flights = SingleFlight()
    app.state.scheduler = build_scheduler(wallet) if wallet is not None else None
    app.add_exception_handler(DiplomaError, diploma_error_handler)
    app.include_router(router)

    @app.on_event("startup")
    async def startup():
        await app.state.session.detect_capability()
        if settings.CONTRACT_ADDRESS:
            try:
                await app.state.binding.bind(settings.CONTRACT_ADDRESS, load_abi(settings.CONTRACT_VARIANT))
            except DiplomaError as e:
                log.warning("could not bind %s at startup: %s", settings.CONTRACT_ADDRESS, e.message)
        if app.state.scheduler is not None:
            try:
                app.state.scheduler.start()
            except SchedulerAlreadyRunningError:
                # dev reload can start twice
                log.debug("scheduler already running")

    @app.on_event("shutdown")
    async def shutdown():
        scheduler = app.state.scheduler
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        app.state.session.close()

    return app


app = create_app()


def run():
    uvicorn.run("diploma_app.main:app", host=settings.HOST, port=settings.PORT)
