"""Process-owned application state, built at startup and injected into routes."""

from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient

from desci.core.config import Settings
from desci.core.exceptions import ConfigurationError
from desci.ledger.base import LedgerClient, get_or_create_main_topic, initialize_platform_token
from desci.services.blob_store import BlobStore, GridFSBlobStore, InMemoryBlobStore
from desci.services.paper_store import InMemoryPaperStore, MongoPaperStore, PaperStore, ping
from desci.services.payments import PaidAccessRegistry, PaymentProcessor
from desci.services.research_agent import ResearchAgent
from desci.utils.logger import logger


@dataclass
class AppState:
    settings: Settings
    store: PaperStore
    blobs: BlobStore
    ledger: Optional[LedgerClient] = None
    main_topic_id: Optional[str] = None
    platform_token_id: Optional[str] = None
    paid_registry: PaidAccessRegistry = field(default_factory=PaidAccessRegistry)
    mongo_client: Optional[AsyncIOMotorClient] = None
    agent: Optional[ResearchAgent] = None

    def __post_init__(self):
        if self.agent is None:
            payments = PaymentProcessor(
                mode=self.settings.PAYMENT_MODE,
                ledger=self.ledger,
                token_id=self.platform_token_id,
                token_decimals=self.settings.TOKEN_DECIMALS,
                settlement_topic_id=self.main_topic_id,
            )
            self.agent = ResearchAgent(
                self.store,
                self.blobs,
                payments,
                self.paid_registry,
                search_limit=self.settings.SEARCH_LIMIT,
                platform_fee_percent=self.settings.PLATFORM_FEE_PERCENT,
            )

    async def close(self) -> None:
        if self.ledger is not None:
            await self.ledger.close()
        if self.mongo_client is not None:
            self.mongo_client.close()


async def _connect_ledger(settings: Settings) -> LedgerClient:
    # Imported here so memory-backed runs never load the SDK
    from desci.ledger.hedera import HederaLedger

    return await HederaLedger.connect(settings)


async def build_app_state(settings: Settings) -> AppState:
    """Connect every upstream dependency; any failure aborts startup."""
    backend = settings.STORAGE_BACKEND.lower()
    mongo_client = None
    if backend == "mongo":
        mongo_client = AsyncIOMotorClient(settings.MONGODB_URI, tz_aware=True)
        db = mongo_client[settings.MONGODB_DB]
        await ping(db)
        store: PaperStore = MongoPaperStore(db)
        blobs: BlobStore = GridFSBlobStore(db)
        logger.info("GridFS initialized for paper storage")
    elif backend == "memory":
        logger.warning("Using in-memory storage; data is lost on restart")
        store = InMemoryPaperStore()
        blobs = InMemoryBlobStore()
    else:
        raise ConfigurationError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")

    await store.ensure_indexes()

    ledger = None
    main_topic_id = None
    platform_token_id = settings.PLATFORM_TOKEN_ID
    if settings.LEDGER_ENABLED:
        logger.info("Initializing Hedera client...")
        ledger = await _connect_ledger(settings)
        main_topic_id = await get_or_create_main_topic(ledger, settings.MAIN_TOPIC_ID)

        if settings.PLATFORM_TOKEN_NAME and settings.PLATFORM_TOKEN_SYMBOL and not platform_token_id:
            platform_token_id = await initialize_platform_token(
                ledger,
                settings.PLATFORM_TOKEN_NAME,
                settings.PLATFORM_TOKEN_SYMBOL,
                settings.INITIAL_SUPPLY,
                settings.TOKEN_DECIMALS,
            )
    else:
        logger.warning("Ledger disabled; uploads will be rejected until a ledger client is configured")

    return AppState(
        settings=settings,
        store=store,
        blobs=blobs,
        ledger=ledger,
        main_topic_id=main_topic_id,
        platform_token_id=platform_token_id,
        mongo_client=mongo_client,
    )


def get_state(request: Request) -> AppState:
    return request.app.state.desci
