# services/acquisition_orchestrator.py
"""
Deadline-bounded recognition pipeline.

QuickIdentify -> CacheLookup -> (hit) Ready
                             -> (miss) Generate -> Verify -> Merge -> PersistCache -> Ready

One wall-clock budget bounds the whole session and generation carries its
own nested sub-budget. QuickIdentify, the cache reads and detached
verification are best effort; Generate failures end the session.
"""
import asyncio
import base64
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from agents.bundle_merger_agent import BundleMergerAgent, bundle_merger_agent
from services.confidence import (
    ConfidenceLevel,
    NarrativeTemplate,
    classify,
    is_cache_eligible,
    template_for,
    verifies_in_background,
)
from services.errors import AcquisitionError, FailureKind, user_message
from services.history_store import HistoryFormatError
from services.progress_tracker import ProgressTracker, SessionPhase
from services.speech_service import language_tag_for
from state.artwork_schema import (
    DEFAULT_NARRATION_LANGUAGE,
    ArtworkIdentity,
    ArtworkRecord,
    HistoryEntry,
    NarrationBundle,
    QuickGuess,
)
from utils.artwork_identity import is_unknown_artist, is_unresolved_title, resolve
from utils.image_preparation import prepare_jpeg

logger = logging.getLogger(__name__)

TOTAL_BUDGET_SECONDS = 20.0
GENERATION_BUDGET_SECONDS = 12.0
VERIFICATION_BUDGET_SECONDS = 5.0
# Generation needs at least this share of its budget left to start
MIN_GENERATION_SHARE = 0.5


class Deadline:
    def __init__(self, clock: Callable[[], float], budget: float):
        self.clock = clock
        self.budget = budget
        self.started = clock()

    def elapsed(self) -> float:
        return self.clock() - self.started

    def remaining(self) -> float:
        return self.budget - self.elapsed()

    def check(self, stage: str) -> None:
        if self.remaining() <= 0:
            raise AcquisitionError.timeout(stage)


@dataclass
class SessionOutcome:
    session_id: str
    bundle: Optional[NarrationBundle] = None
    level: Optional[ConfidenceLevel] = None
    template: Optional[NarrativeTemplate] = None
    from_cache: bool = False
    provisional: Optional[ArtworkRecord] = None
    error: Optional[AcquisitionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.bundle is not None


class AcquisitionOrchestrator:
    """
    Drives one recognition session per run() call.
    Collaborators are injected so tests can substitute doubles.
    """

    def __init__(
        self,
        narrator,
        cache_client,
        verifier,
        history_store,
        merger: Optional[BundleMergerAgent] = None,
        speech=None,
        tracker: Optional[ProgressTracker] = None,
        clock: Callable[[], float] = time.monotonic,
        image_preparer: Callable[[bytes], bytes] = prepare_jpeg,
        total_budget: float = TOTAL_BUDGET_SECONDS,
        generation_budget: float = GENERATION_BUDGET_SECONDS,
        verification_budget: float = VERIFICATION_BUDGET_SECONDS,
        narration_language: str = DEFAULT_NARRATION_LANGUAGE,
    ):
        self.narrator = narrator
        self.cache_client = cache_client
        self.verifier = verifier
        self.history_store = history_store
        self.merger = merger or bundle_merger_agent
        self.speech = speech
        self.tracker = tracker or ProgressTracker()
        self.clock = clock
        self.image_preparer = image_preparer
        self.total_budget = total_budget
        self.generation_budget = generation_budget
        self.verification_budget = verification_budget
        self.narration_language = narration_language

    # ------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------
    async def run(self, image_bytes: bytes, session_id: Optional[str] = None, owner: str = "default") -> SessionOutcome:
        session_id = session_id or str(uuid.uuid4())
        self.tracker.start_session(session_id, owner)
        deadline = Deadline(self.clock, self.total_budget)
        provisional: Optional[ArtworkRecord] = None

        logger.info(f"📸 Session {session_id} started")
        try:
            jpeg = await asyncio.to_thread(self.image_preparer, image_bytes)
            image_b64 = base64.b64encode(jpeg).decode("ascii")

            bundle = None
            guess = await self._quick_identify(session_id, image_b64, deadline)
            if guess is not None:
                provisional = ArtworkRecord(title=guess.title, artist=guess.artist, year=guess.year)
                self.tracker.update_session(session_id, provisional=provisional)
                bundle = await self._cache_lookup(session_id, guess, deadline)

            from_cache = bundle is not None
            if bundle is None:
                bundle = await self._generate(session_id, image_b64, deadline)
                bundle = await self._finalize_generated(session_id, bundle, deadline)

        except AcquisitionError as e:
            return self._fail(session_id, e, provisional, deadline)
        except Exception as e:
            logger.error(f"❌ Session {session_id} crashed: {e}", exc_info=True)
            return self._fail(session_id, AcquisitionError(FailureKind.REQUEST_FAILED, details=str(e)), provisional, deadline)

        level = classify(bundle.confidence)
        template = template_for(level)

        self._record_history(bundle, jpeg)
        if self.speech is not None:
            self._spawn(
                session_id,
                self.speech.prepare(bundle.narration, language_tag_for(self.narration_language)),
                "audio pre-generation",
            )

        self.tracker.update_session(
            session_id,
            phase=SessionPhase.READY,
            bundle=bundle,
            confidence_level=level.value,
            template=template.value,
        )
        logger.info(
            f"✅ Session {session_id} ready in {deadline.elapsed():.1f}s: '{bundle.title}' "
            f"({level.value}, {'cache' if from_cache else 'generated'})"
        )
        return SessionOutcome(
            session_id=session_id,
            bundle=bundle,
            level=level,
            template=template,
            from_cache=from_cache,
            provisional=provisional,
        )

    def _fail(self, session_id: str, error: AcquisitionError, provisional, deadline: Deadline) -> SessionOutcome:
        # The provisional guess stays on the progress record
        self.tracker.update_session(
            session_id,
            phase=SessionPhase.FAILED,
            failure_kind=error.kind.value,
            error=user_message(error),
        )
        logger.error(f"❌ Session {session_id} failed after {deadline.elapsed():.1f}s: {error}")
        return SessionOutcome(session_id=session_id, provisional=provisional, error=error)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------
    async def _within_deadline(self, awaitable: Awaitable, deadline: Deadline, stage: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=max(deadline.remaining(), 0.0))
        except asyncio.TimeoutError as e:
            raise AcquisitionError(FailureKind.TIMEOUT, details=f"{stage} ran past the session deadline") from e

    @staticmethod
    async def _best_effort(awaitable: Awaitable, label: str) -> Any:
        try:
            return await awaitable
        except Exception as e:
            logger.warning(f"⚠️ {label} failed, continuing without it: {e}")
            return None

    @staticmethod
    async def _background(awaitable: Awaitable, label: str) -> Any:
        try:
            return await awaitable
        except asyncio.CancelledError:
            logger.info(f"🛑 Background {label} cancelled")
            raise
        except Exception as e:
            logger.warning(f"⚠️ Background {label} failed: {e}")
            return None

    def _spawn(self, session_id: str, awaitable: Awaitable, label: str) -> asyncio.Task:
        task = asyncio.create_task(self._background(awaitable, label))
        return self.tracker.register_task(session_id, task)

    # ------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------
    async def _quick_identify(self, session_id: str, image_b64: str, deadline: Deadline) -> Optional[QuickGuess]:
        deadline.check("quick identify")
        self.tracker.update_session(session_id, phase=SessionPhase.IDENTIFYING)

        # Leave the generation sub-budget untouched
        window = deadline.remaining() - self.generation_budget
        if window <= 0:
            logger.warning("⚠️ No time left for quick identify, skipping")
            return None

        try:
            guess = await asyncio.wait_for(self.narrator.quick_identify(image_b64), timeout=window)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Quick identify exceeded {window:.1f}s, skipping cache lookup")
            return None
        except Exception as e:
            logger.warning(f"⚠️ Quick identify failed, skipping cache lookup: {e}")
            return None

        if is_unresolved_title(guess.title) or is_unknown_artist(guess.artist):
            logger.info(f"Quick identify unresolved ('{guess.title}' / '{guess.artist}')")
            return None

        logger.info(f"🔍 Quick guess: '{guess.title}' by '{guess.artist}'")
        return guess

    async def _cache_lookup(self, session_id: str, guess: QuickGuess, deadline: Deadline) -> Optional[NarrationBundle]:
        if not self.cache_client.is_configured:
            return None

        deadline.check("cache lookup")
        # Same reserve as quick identify; an overrun is a miss
        window = deadline.remaining() - self.generation_budget
        if window <= 0:
            logger.warning("⚠️ No time left for the cache lookup, treating as a miss")
            return None

        self.tracker.update_session(session_id, phase=SessionPhase.LOADING_CACHE)
        identity = resolve(guess.title, guess.artist, guess.year)

        reads = asyncio.gather(
            self._best_effort(self.cache_client.find_artwork(identity.combined_hash), "Artwork cache read"),
            self._best_effort(self.cache_client.find_artist_introduction(guess.artist), "Artist cache read"),
        )
        try:
            cached, artist = await asyncio.wait_for(reads, timeout=window)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Cache lookup exceeded {window:.1f}s, treating as a miss")
            return None

        if cached is None:
            logger.info(f"Cache miss for {identity.combined_hash[:12]}")
            return None

        dedicated = artist.introduction if artist is not None else None
        bundle = cached.to_bundle(artist_introduction=dedicated)
        self._spawn(session_id, self.cache_client.increment_view_count(cached.id), "view count increment")
        logger.info(f"⚡ Cache hit for '{bundle.title}'")
        return bundle

    async def _generate(self, session_id: str, image_b64: str, deadline: Deadline) -> NarrationBundle:
        deadline.check("generation")
        if deadline.remaining() < self.generation_budget * MIN_GENERATION_SHARE:
            raise AcquisitionError.timeout("generation")

        self.tracker.update_session(session_id, phase=SessionPhase.GENERATING, received_chars=0)
        window = min(self.generation_budget, deadline.remaining())

        def on_progress(received: int) -> None:
            self.tracker.update_session(session_id, received_chars=received)

        try:
            bundle = await asyncio.wait_for(
                self.narrator.generate_streaming(image_b64, on_progress),
                timeout=window,
            )
        except asyncio.TimeoutError as e:
            raise AcquisitionError(FailureKind.TIMEOUT, details=f"streaming generation exceeded {window:.1f}s") from e
        except AcquisitionError as e:
            if e.kind is FailureKind.TIMEOUT:
                raise
            logger.warning(f"⚠️ Streaming generation failed ({e}), retrying without streaming")
            deadline.check("generation fallback")
            bundle = await self._within_deadline(self.narrator.generate(image_b64), deadline, "generation fallback")

        if not bundle.narration.strip():
            raise AcquisitionError(FailureKind.INVALID_RESPONSE, details="empty narration")
        return bundle

    def _settle(self, bundle: NarrationBundle) -> NarrationBundle:
        recognized = is_cache_eligible(classify(bundle.confidence)) and not is_unresolved_title(bundle.title)
        if bundle.recognized == recognized:
            return bundle
        return bundle.derive(recognized=recognized)

    async def _verify(self, bundle: NarrationBundle, identity: ArtworkIdentity, deadline: Deadline) -> Optional[ArtworkRecord]:
        deadline.check("verification")
        window = min(self.verification_budget, deadline.remaining())
        try:
            return await asyncio.wait_for(
                self._best_effort(self.verifier.run(bundle, identity.combined_hash), "Verification"),
                timeout=window,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Verification exceeded {window:.1f}s, continuing unverified")
            return None

    async def _finalize_generated(self, session_id: str, bundle: NarrationBundle, deadline: Deadline) -> NarrationBundle:
        bundle = self._settle(bundle)
        identity = resolve(bundle.title, bundle.artist, bundle.year)

        if verifies_in_background(classify(bundle.confidence)):
            # Result lands in the verifier's memory for later sessions only
            self._spawn(session_id, self.verifier.run(bundle, identity.combined_hash), "verification")
        else:
            self.tracker.update_session(session_id, phase=SessionPhase.VERIFYING)
            verified = await self._verify(bundle, identity, deadline)
            deadline.check("merge")
            bundle = self._settle(self.merger.merge(bundle, verified))
            identity = resolve(bundle.title, bundle.artist, bundle.year)

        if is_cache_eligible(classify(bundle.confidence)) and bundle.recognized:
            bundle = await self._persist(session_id, bundle, identity, deadline)
        return bundle

    async def _persist(
        self, session_id: str, bundle: NarrationBundle, identity: ArtworkIdentity, deadline: Deadline
    ) -> NarrationBundle:
        if not self.cache_client.is_configured:
            return bundle
        deadline.check("cache write")
        return await self._within_deadline(self._write_back(session_id, bundle, identity), deadline, "cache write")

    async def _write_back(self, session_id: str, bundle: NarrationBundle, identity: ArtworkIdentity) -> NarrationBundle:
        """
        Stores a high-confidence bundle. A cached artwork that fuzzy-matches
        under another spelling is reused instead of saving a duplicate row.
        """
        similar = await self._best_effort(self.cache_client.find_similar_artwork(identity), "Similar artwork read")
        if similar is not None:
            logger.info(f"🔄 Reusing cached '{similar.title}' instead of saving '{bundle.title}'")
            bundle = similar.to_bundle()
            self._spawn(session_id, self.cache_client.increment_view_count(similar.id), "view count increment")

        if not is_unknown_artist(bundle.artist):
            existing = await self._best_effort(
                self.cache_client.find_artist_introduction(bundle.artist), "Artist cache read"
            )
            canonical = existing.introduction if existing is not None else None
            if canonical:
                bundle = bundle.derive(artist_introduction=canonical)
            elif bundle.artist_introduction:
                await self._best_effort(
                    self.cache_client.save_artist_introduction(bundle.artist, bundle.artist_introduction),
                    "Artist introduction write",
                )

        if similar is None:
            await self._best_effort(self.cache_client.save_artwork(bundle, identity), "Artwork cache write")
        return bundle

    def _record_history(self, bundle: NarrationBundle, image_bytes: bytes) -> None:
        entry_id = str(uuid.uuid4())
        try:
            photo_path = self.history_store.store_photo(entry_id, image_bytes)
            self.history_store.append(
                HistoryEntry(
                    id=entry_id,
                    artwork=bundle.to_record(),
                    narration=bundle.narration,
                    artist_introduction=bundle.artist_introduction,
                    narration_language=self.narration_language,
                    confidence=bundle.confidence,
                    photo_path=photo_path,
                )
            )
        except (OSError, HistoryFormatError) as e:
            logger.warning(f"⚠️ Could not record history entry: {e}")
