"""
Asynchronous one-shot model loading with an explicit lifecycle state.

Consumers poll ``state``/``session`` without blocking: while a model is
loading (or after it failed) they fall back to their lower detection
tiers. A failed or timed-out load is permanent for the run.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Callable, Optional, Sequence

logger = logging.getLogger(__name__)


class ModelState(str, Enum):
    """Lifecycle of an inference capability."""
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ModelLoadError(Exception):
    """Raised when no configured model path could be loaded."""


class ModelLifecycle:
    """
    Loads a model once in a background thread and releases it exactly once.

    Model paths are tried in order (primary, then fallbacks); only when
    every path fails does the lifecycle become FAILED.

    Example:
        lifecycle = ModelLifecycle("ball", OnnxYoloSession, ["models/ball.onnx"])
        lifecycle.start()
        ...
        session = lifecycle.session  # None until READY
    """

    def __init__(
        self,
        name: str,
        loader: Callable[[Optional[str]], Any],
        paths: Sequence[Optional[str]] = (None,),
        timeout: Optional[float] = None,
        releaser: Optional[Callable[[Any], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            name: Label used in logs.
            loader: Callable building a session from a path.
            paths: Candidate model paths, tried in order.
            timeout: Seconds a load may take before it is treated as failed.
            releaser: Callable freeing a loaded session; defaults to its close().
            clock: Monotonic clock used for the timeout.
        """
        self.name = name
        self.loader = loader
        self.paths = [p for p in paths] or [None]
        self.timeout = timeout
        self.releaser = releaser
        self.clock = clock

        self._state = ModelState.UNLOADED
        self._session: Any = None
        self._error: Optional[BaseException] = None
        self._future: Optional[Future] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._started_at: Optional[float] = None
        self._released = False
        self._lock = threading.Lock()

    @property
    def state(self) -> ModelState:
        """Current state; polling also applies the load timeout."""
        with self._lock:
            if (
                self._state == ModelState.LOADING
                and self.timeout is not None
                and self._started_at is not None
                and self.clock() - self._started_at > self.timeout
            ):
                logger.warning(f"Model '{self.name}' load timed out after {self.timeout:.1f}s")
                self._state = ModelState.FAILED
                self._error = ModelLoadError(f"load timed out after {self.timeout}s")
            return self._state

    @property
    def session(self) -> Any:
        """The loaded session when READY, otherwise None. Never blocks."""
        return self._session if self.state == ModelState.READY else None

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def released(self) -> bool:
        return self._released

    def start(self) -> None:
        """Begin loading in the background. Later calls are no-ops."""
        with self._lock:
            if self._state != ModelState.UNLOADED or self._released:
                return
            self._state = ModelState.LOADING
            self._started_at = self.clock()
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"load-{self.name}")
            self._future = self._executor.submit(self._load_and_finish)
        logger.info(f"Loading model '{self.name}' in background")

    def load(self) -> ModelState:
        """Load synchronously in the calling thread. Later calls are no-ops."""
        with self._lock:
            if self._state != ModelState.UNLOADED or self._released:
                return self._state
            self._state = ModelState.LOADING
            self._started_at = self.clock()

        self._load_and_finish()
        return self.state

    def wait(self, timeout: Optional[float] = None) -> ModelState:
        """Block until a background load settles (used by offline runs)."""
        if self._future is not None:
            wait([self._future], timeout=timeout)
        return self.state

    def _load(self) -> Any:
        errors = []
        for path in self.paths:
            try:
                session = self.loader(path)
                logger.info(f"Model '{self.name}' loaded from {path or 'default location'}")
                return session
            except Exception as e:
                logger.warning(f"Model '{self.name}' failed to load from {path}: {e}")
                errors.append(f"{path}: {e}")
        raise ModelLoadError(f"Model '{self.name}' unavailable ({'; '.join(errors)})")

    def _load_and_finish(self) -> None:
        try:
            session = self._load()
        except ModelLoadError as e:
            self._finish(None, e)
        else:
            self._finish(session, None)

    def _finish(self, session: Any, error: Optional[BaseException]) -> None:
        with self._lock:
            late = self._state != ModelState.LOADING or self._released
            if not late:
                self._session = session
                self._error = error
                self._state = ModelState.READY if error is None else ModelState.FAILED

        if error is not None and not late:
            logger.warning(f"Inference capability '{self.name}' unavailable, using fallback tiers")
        if late and session is not None:
            # Timed out or released while loading
            self._release_session(session)

    def release(self) -> None:
        """Release the session. Safe to call repeatedly; releases exactly once."""
        with self._lock:
            if self._released:
                return
            self._released = True
            session, self._session = self._session, None
            if self._state in (ModelState.LOADING, ModelState.READY):
                self._state = ModelState.UNLOADED
            future, executor = self._future, self._executor

        if future is not None:
            future.cancel()
        if executor is not None:
            executor.shutdown(wait=False)
        if session is not None:
            self._release_session(session)
            logger.info(f"Model '{self.name}' released")

    def _release_session(self, session: Any) -> None:
        try:
            if self.releaser is not None:
                self.releaser(session)
            elif hasattr(session, "close"):
                session.close()
        except Exception as e:
            logger.warning(f"Error releasing model '{self.name}': {e}")
