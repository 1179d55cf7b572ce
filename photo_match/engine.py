"""
Photo matching engine.

Orchestrates the per-target matching pipeline:
    1. Resolve the target descriptor through the session cache
    2. Pre-filter the candidate pool on cheap metadata (no pixels fetched)
    3. Score surviving candidates in parallel on a bounded thread pool
    4. Keep scores >= threshold, rank, truncate to top-K, label

Each asset is independent. A target or candidate that cannot be fetched
or decoded is recorded in the report's error summary and skipped; only
configuration errors abort a call.
"""

import os
import enum
import threading
import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout, as_completed
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from .cache import FeatureCache
from .config import MatchConfig, ORIGINAL_FINDER
from .errors import AssetError, ExtractionFailed
from .features import FeatureExtractor, ImageDescriptor
from .prefilter import filter_candidates
from .scoring import MatchCandidate, MatchGroup, SimilarityScorer, rank_matches
from .store import AssetMetadata, AssetStore, PixelBuffer

logger = logging.getLogger(__name__)


class EngineState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"


class ErrorSummary:
    """Thread-safe record of per-asset failures for one invocation."""

    def __init__(self):
        self._failures: Dict[Hashable, AssetError] = {}
        self._lock = threading.Lock()

    def record(self, asset_id: Hashable, error: AssetError) -> bool:
        """Record the first failure seen for asset_id. Returns True if new."""
        with self._lock:
            if asset_id in self._failures:
                return False
            self._failures[asset_id] = error
        logger.warning(f"Skipping {asset_id!r}: {error}")
        return True

    @property
    def failures(self) -> Dict[Hashable, AssetError]:
        with self._lock:
            return dict(self._failures)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._failures)

    @property
    def ids(self) -> List[Hashable]:
        with self._lock:
            return list(self._failures)

    def by_kind(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for error in self.failures.values():
            counts[error.kind] = counts.get(error.kind, 0) + 1
        return counts

    def __len__(self):
        return self.count

    def __bool__(self):
        return self.count > 0


class MatchReport(Mapping):
    """
    Result of one find_matches() call.

    Behaves as a read-only mapping of target id -> MatchGroup. Targets
    skipped because of cancellation are absent.
    """

    def __init__(self,
                 groups: Dict[Hashable, MatchGroup],
                 errors: ErrorSummary,
                 state: EngineState,
                 cancelled: bool,
                 stats: dict):
        self._groups = groups
        self.errors = errors
        self.state = state
        self.cancelled = cancelled
        self.stats = stats

    def __getitem__(self, target_id) -> MatchGroup:
        return self._groups[target_id]

    def __iter__(self):
        return iter(self._groups)

    def __len__(self):
        return len(self._groups)

    def __repr__(self):
        return (f"MatchReport(targets={len(self)}, state={self.state.value}, "
                f"failures={self.errors.count}, cancelled={self.cancelled})")


class _Session:
    """Per-invocation state shared by the worker tasks."""

    def __init__(self, config: MatchConfig, scorer: SimilarityScorer,
                 cancel_event: threading.Event):
        self.config = config
        self.scorer = scorer
        self.cancel_event = cancel_event
        self.errors = ErrorSummary()
        self.fetch_executor: Optional[ThreadPoolExecutor] = None


class MatchingEngine:
    """
    Finds the best matches for target photos within a candidate pool.

    The engine holds a non-owning reference to a session-scoped
    FeatureCache: every descriptor is extracted at most once per session,
    however many targets share the pool. One invocation runs at a time
    per engine instance.
    """

    def __init__(self,
                 store: AssetStore,
                 cache: FeatureCache,
                 extractor: FeatureExtractor = None,
                 scorer_factory: Callable[..., SimilarityScorer] = SimilarityScorer):
        """
        Args:
            store: Source of candidate ids, metadata and pixels.
            cache: Session descriptor cache, shared across invocations.
            extractor: Descriptor extractor. Defaults to FeatureExtractor().
            scorer_factory: Builds a scorer from a WeightConfig.
        """
        self.store = store
        self.cache = cache
        self.extractor = extractor or FeatureExtractor()
        self.scorer_factory = scorer_factory

        self._state = EngineState.IDLE
        self._done = 0
        self._total = 0
        self._status_lock = threading.Lock()
        self._run_lock = threading.Lock()

    @property
    def state(self) -> EngineState:
        with self._status_lock:
            return self._state

    @property
    def progress(self) -> Tuple[int, int]:
        """(targets processed, targets total) for the current invocation."""
        with self._status_lock:
            return self._done, self._total

    def find_matches(self,
                     target_ids: Iterable[Hashable],
                     candidate_pool: Optional[Iterable[Hashable]] = None,
                     config: Optional[MatchConfig] = None,
                     cancel_event: Optional[threading.Event] = None,
                     on_progress: Optional[Callable[[int, int], None]] = None
                     ) -> MatchReport:
        """
        Find ranked matches for each target.

        Args:
            target_ids: Assets to find matches for (duplicates ignored).
            candidate_pool: Assets to search; defaults to
                store.list_candidates(). Pool order breaks score ties.
            config: Thresholds, weights and pre-filter. Defaults to
                MatchConfig().
            cancel_event: Set it to stop dispatching new work; the report
                then holds what was computed so far.
            on_progress: Called as on_progress(done, total) after each
                target, from the calling thread.

        Returns:
            MatchReport mapping each processed target to its MatchGroup.

        Raises:
            InvalidWeights: The weight configuration is invalid.
            TypeError: config is not a MatchConfig.
        """
        config = config if config is not None else MatchConfig()
        if not isinstance(config, MatchConfig):
            raise TypeError(f"Expected MatchConfig, got {type(config).__name__}")
        scorer = self.scorer_factory(config.weights)

        with self._run_lock:
            return self._run(target_ids, candidate_pool, config, scorer,
                             cancel_event or threading.Event(), on_progress)

    def find_original(self,
                      target_id: Hashable,
                      candidate_pool: Optional[Iterable[Hashable]] = None,
                      config: MatchConfig = ORIGINAL_FINDER) -> Optional[MatchCandidate]:
        """
        Best equal-or-higher resolution match for a single photo, or None.

        Uses the ORIGINAL_FINDER preset by default: duplicate weights with
        the resolution sub-score and a minimum resolution pre-filter.
        """
        report = self.find_matches([target_id], candidate_pool, config)
        group = report.get(target_id)
        return group.best if group is not None else None

    def _run(self, target_ids, candidate_pool, config, scorer,
             cancel_event, on_progress) -> MatchReport:
        targets = list(dict.fromkeys(target_ids))
        if candidate_pool is None:
            pool = list(self.store.list_candidates())
        else:
            pool = list(dict.fromkeys(candidate_pool))

        self._begin(len(targets))
        session = _Session(config, scorer, cancel_event)
        max_workers = config.max_workers or os.cpu_count() or 1
        stats = {"targets": len(targets), "pool": len(pool),
                 "prefiltered_out": 0, "scored": 0, "kept": 0}
        groups: Dict[Hashable, MatchGroup] = {}

        logger.info(
            f"Matching {len(targets)} targets against {len(pool)} candidates "
            f"(threshold={config.threshold}, top_k={config.top_k}, workers={max_workers})"
        )

        if config.fetch_timeout is not None:
            session.fetch_executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="photo-match-fetch"
            )

        try:
            candidates = self._resolve_metadata(pool, session)

            with ThreadPoolExecutor(max_workers=max_workers,
                                    thread_name_prefix="photo-match") as executor:
                for target_id in targets:
                    if cancel_event.is_set():
                        break
                    groups[target_id] = self._match_target(
                        target_id, candidates, executor, session, stats
                    )
                    done, total = self._advance()
                    if on_progress is not None:
                        on_progress(done, total)
        except BaseException:
            self._finish(EngineState.PARTIALLY_FAILED)
            raise
        finally:
            if session.fetch_executor is not None:
                # Timed-out fetches may still be running; don't wait on them
                session.fetch_executor.shutdown(wait=False, cancel_futures=True)

        cancelled = cancel_event.is_set()
        state = (EngineState.PARTIALLY_FAILED if session.errors or cancelled
                 else EngineState.COMPLETED)
        self._finish(state)

        logger.info(
            f"Matching {state.value}: {len(groups)}/{len(targets)} targets, "
            f"{stats['scored']} scored, {stats['kept']} kept, "
            f"{session.errors.count} failures"
        )

        return MatchReport(groups, session.errors, state, cancelled, stats)

    def _resolve_metadata(self, pool: List[Hashable],
                          session: _Session) -> List[Tuple[int, AssetMetadata]]:
        candidates = []
        for order, asset_id in enumerate(pool):
            try:
                meta = self.store.asset_metadata(asset_id)
            except AssetError as e:
                session.errors.record(asset_id, e)
                continue
            if meta.width <= 0 or meta.height <= 0:
                session.errors.record(
                    asset_id, ExtractionFailed(asset_id, "zero-size image"))
                continue
            candidates.append((order, meta))
        return candidates

    def _match_target(self, target_id, candidates, executor,
                      session: _Session, stats: dict) -> MatchGroup:
        config = session.config

        try:
            target = self._descriptor(target_id, session)
        except AssetError as e:
            session.errors.record(target_id, e)
            return MatchGroup(target_id)

        survivors = filter_candidates(
            target_id, target.width, target.height, candidates, config.prefilter
        )
        stats["prefiltered_out"] += len(candidates) - len(survivors)

        futures = {}
        for order, meta in survivors:
            if session.cancel_event.is_set():
                break
            future = executor.submit(self._score_candidate, target, meta.asset_id, session)
            futures[future] = (order, meta.asset_id)

        scored = []
        for future in as_completed(futures):
            if session.cancel_event.is_set():
                for pending in futures:
                    pending.cancel()
            if future.cancelled():
                continue
            score = future.result()
            if score is None:
                continue
            order, candidate_id = futures[future]
            scored.append((candidate_id, score, order))

        stats["scored"] += len(scored)
        kept = [entry for entry in scored if entry[1] >= config.threshold]
        ranked = rank_matches(kept)[:config.top_k]
        stats["kept"] += len(ranked)

        matches = tuple(
            MatchCandidate(candidate_id, score, config.reason_bands.label(score))
            for candidate_id, score, _ in ranked
        )
        logger.debug(
            f"{target_id!r}: {len(survivors)} candidates, {len(scored)} scored, "
            f"{len(matches)} matches"
        )
        return MatchGroup(target_id, matches)

    def _score_candidate(self, target: ImageDescriptor, candidate_id,
                         session: _Session) -> Optional[float]:
        if session.cancel_event.is_set():
            return None
        try:
            candidate = self._descriptor(candidate_id, session)
        except AssetError as e:
            session.errors.record(candidate_id, e)
            return None
        return session.scorer.score(target, candidate)

    def _descriptor(self, asset_id, session: _Session) -> ImageDescriptor:
        return self.cache.get_or_compute(
            asset_id, lambda: self._fetch_and_extract(asset_id, session)
        )

    def _fetch_and_extract(self, asset_id, session: _Session) -> ImageDescriptor:
        buffer = self._fetch(asset_id, session)
        try:
            return self.extractor.extract(buffer.data, buffer.width, buffer.height)
        except AssetError as e:
            if e.asset_id is None:
                raise type(e)(asset_id, e.reason) from e
            raise

    def _fetch(self, asset_id, session: _Session) -> PixelBuffer:
        timeout = session.config.fetch_timeout
        if session.fetch_executor is None:
            return self.store.fetch_pixel_buffer(asset_id)

        future = session.fetch_executor.submit(self.store.fetch_pixel_buffer, asset_id)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise ExtractionFailed(asset_id, f"fetch timed out after {timeout}s")

    def _begin(self, total: int) -> None:
        with self._status_lock:
            self._state = EngineState.RUNNING
            self._done = 0
            self._total = total

    def _advance(self) -> Tuple[int, int]:
        with self._status_lock:
            self._done += 1
            return self._done, self._total

    def _finish(self, state: EngineState) -> None:
        with self._status_lock:
            self._state = state
