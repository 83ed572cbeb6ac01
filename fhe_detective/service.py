"""
Detective Service
=================

Composes the repository, analyzer and authorizer into the user actions:

- refresh()              reload testimonies and recompute contradictions
- submit_testimony()     encode and persist a new testimony
- decrypt()              reveal one credibility score after a signature
- check_availability()   check backend availability
- case_analysis()        statistics, timeline and contradictions of a case

Read paths never raise. Actions return tagged ActionResult /
AuthorizationResult values.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from .analyzer import (
    CaseStatistics,
    ContradictionAnalyzer,
    case_statistics,
    case_timeline,
)
from .authorizer import (
    AuthorizationResult,
    ChainProvider,
    DecryptionAuthorizer,
    SessionContext,
    StaticChainProvider,
    WalletProvider,
)
from .codec import ValueCodec, get_codec
from .config import Settings, get_settings
from .errors import SubmissionFailure, SubmissionRejected, TestimonyNotFoundError
from .models import (
    Case,
    ContradictionPair,
    LoadSnapshot,
    Testimony,
    generate_testimony_id,
    get_case,
    is_known_case,
)
from .repository import TestimonyRepository
from .schemas import ActionResult, ActionStatus, ErrorKind, StoreBackend, SubmitTestimonyRequest
from .store import KeyValueWriter, MemoryStore, SqlStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaseAnalysis:
    """Analysis view of one case"""
    case: Case
    stats: CaseStatistics
    timeline: List[Testimony]
    contradictions: List[ContradictionPair]


class DetectiveService:
    """
    Facade over the core components.

    The current LoadSnapshot is replaced wholesale on every refresh and is
    never mutated, so readers can hold on to it safely.
    """

    def __init__(
        self,
        repository: TestimonyRepository,
        analyzer: ContradictionAnalyzer,
        authorizer: DecryptionAuthorizer,
        codec: Optional[ValueCodec] = None,
    ):
        self.repository = repository
        self.analyzer = analyzer
        self.authorizer = authorizer
        self.codec = codec or get_codec()
        self._snapshot = LoadSnapshot()
        self._refresh_lock = asyncio.Lock()

    @property
    def snapshot(self) -> LoadSnapshot:
        return self._snapshot

    # =========================================================================
    # Load cycle
    # =========================================================================

    async def refresh(self) -> LoadSnapshot:
        """Reload testimonies and contradictions. Keeps the previous snapshot on failure."""
        async with self._refresh_lock:
            try:
                testimonies = await self.repository.load_all()
                contradictions = self.analyzer.find_contradictions(testimonies)
            except Exception as e:
                logger.error(f"Error loading testimonies: {e}")
                return self._snapshot

            self._snapshot = LoadSnapshot(
                testimonies=tuple(testimonies),
                contradictions=frozenset(contradictions),
            )
            return self._snapshot

    # =========================================================================
    # Actions
    # =========================================================================

    async def submit_testimony(
        self,
        request: SubmitTestimonyRequest,
        wallet: Optional[WalletProvider] = None,
    ) -> ActionResult:
        """Encode the credibility score and persist a new testimony"""
        address = request.address
        if wallet is not None:
            address = wallet.connected_address() or address
        if not address:
            return ActionResult(
                status=ActionStatus.ERROR,
                message="Please connect wallet first",
                error_kind=ErrorKind.NOT_CONNECTED,
            )

        if not is_known_case(request.case_id):
            return ActionResult(
                status=ActionStatus.ERROR,
                message=f"Unknown case: {request.case_id}",
                error_kind=ErrorKind.VALIDATION_ERROR,
            )

        now = time.time()
        testimony = Testimony(
            id=generate_testimony_id(int(now * 1000)),
            witness=request.witness,
            encrypted_content=request.content,
            timestamp=int(now),
            case_id=request.case_id,
            credibility=self.codec.encode(request.credibility),
        )

        try:
            await self.repository.append(testimony)
        except SubmissionRejected as e:
            logger.warning(f"Submission {testimony.id} rejected by signer: {e}")
            return ActionResult(
                status=ActionStatus.ERROR,
                message="Transaction rejected by user",
                error_kind=e.kind,
            )
        except SubmissionFailure as e:
            logger.error(f"Submission {testimony.id} failed: {e}")
            return ActionResult(
                status=ActionStatus.ERROR,
                message=f"Submission failed: {str(e) or 'Unknown error'}",
                error_kind=e.kind,
            )

        await self.refresh()
        return ActionResult(
            status=ActionStatus.SUCCESS,
            message="Encrypted testimony submitted!",
            testimony_id=testimony.id,
        )

    async def decrypt(
        self,
        testimony_id: str,
        wallet: Optional[WalletProvider] = None,
    ) -> AuthorizationResult:
        """
        Reveal one testimony's credibility score.

        Raises:
            TestimonyNotFoundError: id is unknown even after a reload
        """
        testimony = self._snapshot.find(testimony_id)
        if testimony is None:
            testimony = (await self.refresh()).find(testimony_id)
        if testimony is None:
            raise TestimonyNotFoundError(f"Unknown testimony: {testimony_id}")
        return await self.authorizer.authorize(testimony.credibility, testimony_id=testimony_id, wallet=wallet)

    async def check_availability(self) -> ActionResult:
        try:
            available = await self.repository.reader.is_available()
        except Exception as e:
            return ActionResult(
                status=ActionStatus.ERROR,
                message=f"Check failed: {str(e) or 'Unknown error'}",
                error_kind=ErrorKind.UNAVAILABLE,
            )
        return ActionResult(
            status=ActionStatus.SUCCESS,
            message="Contract is available" if available else "Contract not available",
        )

    # =========================================================================
    # Views
    # =========================================================================

    def testimonies_for_case(self, case_id: str) -> List[Testimony]:
        get_case(case_id)
        return list(self._snapshot.for_case(case_id))

    def case_analysis(self, case_id: str) -> CaseAnalysis:
        case = get_case(case_id)
        snapshot = self._snapshot
        case_of = {t.id: t.case_id for t in snapshot.testimonies}
        pairs = [
            pair for pair in snapshot.contradictions
            if case_of.get(pair.id1) == case_id and case_of.get(pair.id2) == case_id
        ]
        return CaseAnalysis(
            case=case,
            stats=case_statistics(snapshot.testimonies, pairs, case_id, self.codec),
            timeline=case_timeline(snapshot.testimonies, case_id),
            contradictions=pairs,
        )


# =============================================================================
# Factory
# =============================================================================

def create_store(settings: Settings) -> KeyValueWriter:
    if settings.store_backend == StoreBackend.SQL:
        logger.info(f"Using SQL store at {settings.database_url}")
        return SqlStore(settings.database_url)
    logger.info("Using in-memory store")
    return MemoryStore()


def create_service(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueWriter] = None,
    wallet: Optional[WalletProvider] = None,
    session: Optional[SessionContext] = None,
) -> DetectiveService:
    """Wire a service from settings. Collaborators can be injected."""
    settings = settings or get_settings()
    for warning in settings.validate_config():
        logger.warning(warning)

    store = store if store is not None else create_store(settings)
    codec = get_codec()
    session = session or SessionContext.create(
        contract_address=settings.contract_address,
        chain_id=settings.chain_id,
        duration_days=settings.challenge_duration_days,
    )

    return DetectiveService(
        repository=TestimonyRepository(reader=store, writer=store),
        analyzer=ContradictionAnalyzer(codec, tolerance=settings.contradiction_tolerance),
        authorizer=DecryptionAuthorizer(
            session,
            wallet=wallet,
            codec=codec,
            delay_seconds=settings.decrypt_delay_seconds,
            verify_signatures=settings.verify_signatures,
        ),
        codec=codec,
    )


async def create_service_async(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueWriter] = None,
    wallet: Optional[WalletProvider] = None,
    chain: Optional[ChainProvider] = None,
) -> DetectiveService:
    """Like create_service, but asks the chain provider for the chain id and loads once"""
    settings = settings or get_settings()
    chain = chain or StaticChainProvider(settings.chain_id)
    session = await SessionContext.from_providers(
        settings.contract_address,
        chain,
        duration_days=settings.challenge_duration_days,
    )
    service = create_service(settings, store=store, wallet=wallet, session=session)
    try:
        reattached = await service.repository.reconcile()
        if reattached:
            logger.info(f"Recovered {len(reattached)} testimonies at startup")
    except SubmissionFailure as e:
        logger.warning(f"Startup reconcile skipped: {e}")
    await service.refresh()
    return service
