"""
Composition root - builds and wires every pipeline component.

Nothing in the package is a module-level singleton; callers (the FastAPI
lifespan, the standalone runner, tests) get their own Pipeline.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from chainsync.config.database import PostgresConfig
from chainsync.config.settings import Settings, get_settings
from chainsync.models.session import ListeningSessionConfig
from chainsync.repositories.storage import Storage
from chainsync.services.admin_control import AdminControl
from chainsync.services.chain_gateway import ChainGateway, Web3ChainGateway
from chainsync.services.connection_supervisor import ConnectionSupervisor
from chainsync.services.event_handlers import build_event_watchers
from chainsync.services.event_watcher import WatcherGroup
from chainsync.services.listening_session import ListeningSessionManager
from chainsync.services.nft_minter import NftMinterClient
from chainsync.services.reconciliation import ReconciliationProcessor

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    settings: Settings
    gateway: ChainGateway
    storage: Storage
    nft_minter: NftMinterClient
    watchers: WatcherGroup
    reconciliation: ReconciliationProcessor
    session: ListeningSessionManager
    supervisor: ConnectionSupervisor
    admin: AdminControl

    async def start(self):
        await self.supervisor.initialize()

    async def stop(self):
        await self.supervisor.shutdown()
        await self.gateway.close()


def build_pipeline(
    settings: Optional[Settings] = None,
    gateway: Optional[ChainGateway] = None,
    storage: Optional[Storage] = None
) -> Pipeline:
    settings = settings or get_settings()

    if gateway is None:
        gateway = Web3ChainGateway(
            settings.rpc_url,
            ws_url=settings.ws_rpc_url,
            private_key=settings.private_key,
            chain_id=settings.chain_id,
        )
    if storage is None:
        storage = Storage(PostgresConfig.from_settings(settings))

    nft_minter = NftMinterClient(gateway, settings)
    watchers = build_event_watchers(settings, gateway, storage, nft_minter)
    reconciliation = ReconciliationProcessor(storage, nft_minter, settings)
    session = ListeningSessionManager(
        watchers,
        ListeningSessionConfig(
            duration_ms=settings.session_duration_ms,
            auto_restart=settings.session_auto_restart,
            max_restarts=settings.session_max_restarts,
        ),
    )
    supervisor = ConnectionSupervisor(storage, watchers, reconciliation, settings, session=session)

    # Watcher transport errors go to the supervisor without blocking the reporting watcher
    def on_watcher_error(error: BaseException) -> None:
        supervisor.report_error(error, "event watcher")

    watchers.set_error_callback(on_watcher_error)

    admin = AdminControl(supervisor, reconciliation, watchers, session, storage)
    logger.info(f"Pipeline built for chain {settings.chain_id} (mode: {settings.listening_mode})")

    return Pipeline(
        settings=settings,
        gateway=gateway,
        storage=storage,
        nft_minter=nft_minter,
        watchers=watchers,
        reconciliation=reconciliation,
        session=session,
        supervisor=supervisor,
        admin=admin,
    )
