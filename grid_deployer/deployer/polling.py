"""Result polling and transport retry for node deployments.

After a push, every workload of the sent deployment moves through an
explicit state machine driven by ``deployment.get`` observations::

    PENDING --ok result--> OK
    PENDING --error result--> ERROR
    PENDING --budget exhausted--> TIMED_OUT

OK, ERROR and TIMED_OUT are terminal. A returned workload only counts once
the agent reports it at (at least) the version that was sent.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from ..config import settings
from ..core.exceptions import TimeoutError, TransportError
from ..grid.models import Deployment, ResultState
from ..node.client import NodeClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkloadState(Enum):
    """Polling state of one workload."""

    PENDING = "pending"
    OK = "ok"
    ERROR = "error"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self is not WorkloadState.PENDING


@dataclass
class RetryPolicy:
    """Bounded exponential backoff for transport failures."""

    attempts: int = 3
    backoff_base: float = 1.0  # First delay, doubled per attempt
    backoff_max: float = 10.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            attempts=settings.retry_attempts,
            backoff_base=settings.retry_backoff_base,
            backoff_max=settings.retry_backoff_max,
        )

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)


@dataclass
class PollPolicy:
    """Budget for waiting on workload results."""

    interval: float = 2.0
    attempts: int = 60
    timeout: float = 240.0

    @classmethod
    def from_settings(cls) -> "PollPolicy":
        return cls(
            interval=settings.poll_interval,
            attempts=settings.poll_attempts,
            timeout=settings.poll_timeout,
        )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> T:
    """Run ``operation``, retrying only on TransportError.

    Args:
        operation: Zero-argument coroutine factory
        policy: Retry policy
        description: Operation name for log messages
        log: Logger to report retries on

    Returns:
        The operation's result

    Raises:
        TransportError: When every attempt failed to reach the peer
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except TransportError as e:
            if attempt >= policy.attempts:
                log.error(f"{description} failed after {attempt} attempt(s): {e}")
                raise
            backoff = policy.delay(attempt)
            log.warning(
                f"{description} failed (attempt {attempt}/{policy.attempts}), "
                f"retrying in {backoff:.1f}s: {e}"
            )
            await asyncio.sleep(backoff)
            attempt += 1


class WorkloadTracker:
    """Per-workload state machine for one sent deployment."""

    def __init__(self, sent: Deployment):
        self._versions = {wl.name: wl.version for wl in sent.workloads}
        self.states: dict[str, WorkloadState] = {
            name: WorkloadState.PENDING for name in self._versions
        }

    def observe(self, returned: Deployment) -> None:
        """Advance pending workloads from a ``deployment.get`` answer."""
        for workload in returned.workloads:
            state = self.states.get(workload.name)
            if state is None or state.terminal:
                continue
            if workload.version < self._versions[workload.name]:
                # Agent has not picked up the version we sent yet
                continue
            if workload.result.state == ResultState.OK:
                self.states[workload.name] = WorkloadState.OK
            elif workload.result.state == ResultState.ERROR:
                self.states[workload.name] = WorkloadState.ERROR

    def expire(self) -> None:
        """Move every still pending workload to TIMED_OUT."""
        for name, state in self.states.items():
            if state is WorkloadState.PENDING:
                self.states[name] = WorkloadState.TIMED_OUT

    @property
    def pending(self) -> list[str]:
        return [n for n, s in self.states.items() if s is WorkloadState.PENDING]

    @property
    def timed_out(self) -> list[str]:
        return [n for n, s in self.states.items() if s is WorkloadState.TIMED_OUT]

    @property
    def done(self) -> bool:
        return all(state.terminal for state in self.states.values())


async def wait_for_results(
    client: NodeClient,
    sent: Deployment,
    poll: PollPolicy,
    retry: RetryPolicy,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> Deployment:
    """Poll ``deployment.get`` until no sent workload is pending.

    Args:
        client: Client of the node the deployment was pushed to
        sent: The deployment as pushed (carries contract ID and versions)
        poll: Polling budget
        retry: Retry policy for each individual get

    Returns:
        The last deployment returned by the agent

    Raises:
        TimeoutError: Budget exhausted with workloads still pending
        TransportError: A get kept failing after retries
    """
    tracker = WorkloadTracker(sent)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + poll.timeout
    returned = sent

    for attempt in range(1, poll.attempts + 1):
        returned = await with_retry(
            lambda: client.deployment_get(sent.contract_id),
            retry,
            "deployment.get",
            log,
        )
        tracker.observe(returned)
        if tracker.done:
            log.debug(f"Results settled after {attempt} poll(s)")
            return returned

        remaining = deadline - loop.time()
        if attempt == poll.attempts or remaining <= 0:
            break
        log.debug(f"Waiting on {', '.join(tracker.pending)} (poll {attempt})")
        await asyncio.sleep(min(poll.interval, remaining))

    tracker.expire()
    raise TimeoutError(sent.node_id, tracker.timed_out, poll.timeout)
