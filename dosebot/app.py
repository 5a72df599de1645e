# dosebot/app.py
from __future__ import annotations

import sys
from pathlib import Path
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

# --------------------------------------------------------------------------------------
# Ensure project root is in sys.path so "import dosebot.*" always works
# --------------------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # noqa: E402

from dosebot import config as cfg  # noqa: E402
from dosebot.adapters.telegram_adapter import TelegramAdapter  # noqa: E402
from dosebot.core.actions import UserActionHandler  # noqa: E402
from dosebot.core.admin import AdminService  # noqa: E402
from dosebot.core.catalog import ScheduleCatalog  # noqa: E402
from dosebot.core.clock import Clock  # noqa: E402
from dosebot.core.config_validation import validate_config  # noqa: E402
from dosebot.core.daily_init import DailyInitializer  # noqa: E402
from dosebot.core.dose_state import DoseStateMachine  # noqa: E402
from dosebot.core.logging_utils import kv, setup_logging  # noqa: E402
from dosebot.core.reminder_engine import ReminderEngine  # noqa: E402
from dosebot.core.reminder_messaging import ReminderMessenger  # noqa: E402
from dosebot.core.store import InMemoryDoseStore  # noqa: E402
from dosebot.db.session import make_engine  # noqa: E402
from dosebot.db.store import SqlDoseStore  # noqa: E402

MEMORY_URL = "memory"


@dataclass
class Services:
    catalog: ScheduleCatalog
    store: Any
    clock: Clock
    messenger: ReminderMessenger
    machine: DoseStateMachine
    initializer: DailyInitializer
    engine: ReminderEngine
    actions: UserActionHandler
    admin: AdminService


def build_store(url: str) -> Any:
    if url == MEMORY_URL:
        return InMemoryDoseStore()
    return SqlDoseStore(make_engine(url))


def build_services(
    config: Any,
    catalog: ScheduleCatalog,
    store: Any,
    port: Any,
    clock: Optional[Clock] = None,
) -> Services:
    """Wire every core component with explicit collaborators (no globals)."""
    clock = clock or Clock(config.TZ)
    log = logging.getLogger("dosebot.dispatch")
    messenger = ReminderMessenger(port, log, timeout_s=config.DISPATCH_TIMEOUT_S)
    machine = DoseStateMachine(store, max_attempts=config.MAX_RETRY_ATTEMPTS)
    initializer = DailyInitializer(catalog, store, clock, machine)
    engine = ReminderEngine(
        catalog,
        store,
        messenger,
        clock,
        machine,
        initializer,
        cooldown_min=config.REMIND_COOLDOWN_MIN,
    )
    actions = UserActionHandler(
        catalog,
        store,
        messenger,
        clock,
        machine,
        initializer,
        cooldown_min=config.REMIND_COOLDOWN_MIN,
    )
    admin = AdminService(
        catalog,
        store,
        engine,
        initializer,
        clock,
        max_attempts=config.MAX_RETRY_ATTEMPTS,
        cooldown_min=config.REMIND_COOLDOWN_MIN,
    )
    return Services(
        catalog=catalog,
        store=store,
        clock=clock,
        messenger=messenger,
        machine=machine,
        initializer=initializer,
        engine=engine,
        actions=actions,
        admin=admin,
    )


def schedule_jobs(services: Services, config: Any) -> AsyncIOScheduler:
    """
    Register the recurring reminder tick and the midnight initializer.

    Note: The scheduler is created and configured here, but NOT started.
    """
    sched = AsyncIOScheduler(timezone=config.TZ)
    sched.add_job(
        services.engine.tick,
        trigger="interval",
        seconds=config.TICK_SECONDS,
        id="reminder:tick",
        replace_existing=True,
        coalesce=True,
        misfire_grace_time=config.TICK_SECONDS,
        max_instances=1,
    )
    sched.add_job(
        services.initializer.run,
        trigger="cron",
        hour=0,
        minute=0,
        id="init:daily",
        replace_existing=True,
        coalesce=True,
        misfire_grace_time=3600,
        max_instances=1,
    )
    return sched


async def main() -> None:
    setup_logging(cfg)
    log = logging.getLogger("dosebot.app")

    # Fatal on a bad config or catalog: there is no safe default schedule
    catalog = validate_config(cfg)
    token = cfg.get_bot_token()

    store = build_store(cfg.get_db_url())
    if isinstance(store, SqlDoseStore):
        await store.create_schema()

    adapter = TelegramAdapter(bot_token=token)
    services = build_services(cfg, catalog, store, adapter)
    adapter.attach(actions=services.actions, admin=services.admin)

    # Self-heal after downtime spanning a day boundary
    await services.initializer.run()

    sched = schedule_jobs(services, cfg)
    sched.start()

    log.info(
        "startup.ready "
        + kv(
            slots=len(catalog),
            tz=cfg.TIMEZONE,
            tick_s=cfg.TICK_SECONDS,
            store=type(store).__name__,
        )
    )

    try:
        await adapter.run_polling()
    finally:
        sched.shutdown(wait=False)
        await adapter.close()
        if isinstance(store, SqlDoseStore):
            await store.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
