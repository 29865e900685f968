import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .errors import BackendUnavailable

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1   # seconds between slot checks
POLL_ATTEMPTS = 50    # 50 x 100ms = 5s bound

ClientFactory = Callable[[], Any]
Probe = Callable[[Any], Awaitable[Any]]


class ReadinessState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class ReadinessGate:
    """
    Single awaitable "backend client is usable" signal.

    `slot` is polled until it returns a client factory. The factory may
    return the client or a coroutine resolving to it. Only one attempt is
    ever made; every caller awaits the same task, and a failure is replayed
    to every later caller instead of polling again.
    """

    def __init__(
        self,
        slot: Callable[[], Optional[ClientFactory]],
        probe: Optional[Probe] = None,
        interval: float = POLL_INTERVAL,
        attempts: int = POLL_ATTEMPTS,
    ):
        self._slot = slot
        self._probe = probe
        self._interval = interval
        self._attempts = attempts
        self._handle: Any = None
        self._state = ReadinessState.UNINITIALIZED
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is ReadinessState.READY

    def get_handle(self) -> Any:
        return self._handle

    def start(self) -> asyncio.Task:
        """Schedule the initialization attempt without waiting for it. Needs a running loop."""
        if self._task is None:
            self._state = ReadinessState.INITIALIZING
            self._task = asyncio.ensure_future(self._run())
            self._task.add_done_callback(self._log_outcome)
        return self._task

    async def initialize(self) -> Any:
        task = self.start()
        # shield: a cancelled waiter must not cancel the shared attempt
        return await asyncio.shield(task)

    async def wait_for_ready(self) -> Any:
        if self.ready:
            return self._handle
        return await self.initialize()

    async def _run(self) -> Any:
        factory = None
        for _ in range(self._attempts):
            factory = self._slot()
            if factory is not None:
                break
            await asyncio.sleep(self._interval)

        if factory is None:
            self._state = ReadinessState.FAILED
            raise BackendUnavailable(
                f"Backend client not available after {self._interval * self._attempts:.1f}s"
            )

        try:
            handle = factory()
            if inspect.isawaitable(handle):
                handle = await handle
        except Exception as e:
            self._state = ReadinessState.FAILED
            raise BackendUnavailable(f"Backend client could not be created: {e}") from e

        self._handle = handle
        if self._probe is not None:
            try:
                await self._probe(handle)
            except Exception as e:
                logger.warning("Connectivity probe failed: %s", e)

        self._state = ReadinessState.READY
        return handle

    def _log_outcome(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            logger.error("Backend client initialization failed: %s", err)
        else:
            logger.info("Backend client ready")
