"""Compute backend negotiation.

The negotiator owns the process-wide choice of numeric backend. It walks an
ordered preference list of named initializers and keeps the first one that
succeeds. The outcome is sticky: once ``READY`` it is never re-run, and once
``FAILED`` every later call raises the same class of error until ``reset()``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Mapping, Sequence

from lookalike_server.backends.base import BackendInitializer, ComputeBackend
from lookalike_server.errors import BackendUnavailable, EnvironmentUnsupported, SimilarityEngineError

logger = logging.getLogger(__name__)


class BackendState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class BackendNegotiator:
    """Selects and initializes exactly one compute backend."""

    def __init__(
        self,
        *,
        preference: Sequence[str],
        initializers: Mapping[str, BackendInitializer],
        environment_check: Callable[[], None] | None = None,
    ) -> None:
        self._preference = list(preference)
        self._initializers = dict(initializers)
        self._environment_check = environment_check
        self._lock = asyncio.Lock()
        self._state = BackendState.UNINITIALIZED
        self._active: ComputeBackend | None = None
        self._failure: SimilarityEngineError | None = None
        self.initialization_count = 0

    @property
    def state(self) -> BackendState:
        return self._state

    @property
    def active_backend(self) -> ComputeBackend | None:
        return self._active

    async def ensure_ready(self) -> ComputeBackend:
        """Return the active backend, initializing it on first use."""
        if self._state is BackendState.READY and self._active is not None:
            return self._active

        async with self._lock:
            if self._state is BackendState.READY and self._active is not None:
                return self._active
            if self._state is BackendState.FAILED:
                raise self._replay_failure()

            self._state = BackendState.INITIALIZING
            self.initialization_count += 1
            try:
                self._active = await self._initialize()
            except SimilarityEngineError as exc:
                self._state = BackendState.FAILED
                self._failure = exc
                raise
            except BaseException:
                # Cancelled or unexpected; a later caller may try again.
                self._state = BackendState.UNINITIALIZED
                raise
            self._state = BackendState.READY
            return self._active

    def reset(self) -> None:
        """Forget the selected backend or recorded failure."""
        self._state = BackendState.UNINITIALIZED
        self._active = None
        self._failure = None

    def _replay_failure(self) -> SimilarityEngineError:
        failure = self._failure
        if isinstance(failure, BackendUnavailable):
            return BackendUnavailable(failure.attempts)
        if failure is not None:
            return type(failure)(*failure.args)
        return BackendUnavailable([])

    async def _initialize(self) -> ComputeBackend:
        if self._environment_check is not None:
            try:
                await asyncio.to_thread(self._environment_check)
            except (ImportError, OSError) as exc:
                logger.error("Numeric runtime unavailable: %s", exc)
                raise EnvironmentUnsupported(str(exc)) from exc

        attempts: list[tuple[str, str]] = []
        for name in self._preference:
            initializer = self._initializers.get(name)
            if initializer is None:
                logger.debug("Backend %s is not supported by this model; skipping", name)
                attempts.append((name, "not supported"))
                continue
            try:
                backend = await asyncio.to_thread(initializer)
            except Exception as exc:
                logger.info("Backend %s unavailable (%s); trying next", name, exc)
                attempts.append((name, str(exc) or type(exc).__name__))
                continue
            logger.info("Compute backend initialized: %s (%s)", backend.name, backend.device)
            return backend

        error = BackendUnavailable(attempts)
        logger.error("%s", error)
        raise error
