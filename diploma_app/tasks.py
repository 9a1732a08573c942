# diploma_app/tasks.py
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from diploma_app.errors import WalletRequestError
from diploma_app.settings import settings

log = logging.getLogger("tasks")


async def watch_wallet(wallet) -> None:
    """Turn account/chain changes seen on the provider into wallet notifications."""
    try:
        await wallet.poll()
    except WalletRequestError as e:
        log.warning("wallet poll failed: %s", e.message)


def build_scheduler(wallet) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    if hasattr(wallet, "poll"):
        scheduler.add_job(
            watch_wallet,
            "interval",
            args=[wallet],
            seconds=settings.WALLET_POLL_SECONDS,
            max_instances=1,
            coalesce=True,
        )
    return scheduler
