"""
Single-flight credential renewal.

Many requests can fail with 401 at the same moment. The first one to ask for
a new credential becomes the initiator and starts exactly one renewal call;
everyone arriving while that call is outstanding queues up as a waiter and is
settled with the same outcome, in arrival order.
"""

import asyncio
import inspect
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

from core.logging import get_logger
from .credential_store import CredentialStore
from .exceptions import RenewalFailedError
from .models import CredentialPair, RefreshState, RenewalRequest, RequestDescriptor, TokenResponse
from .transport import HttpTransport

logger = get_logger(__name__, component="refresh_coordinator")

AuthFailedCallback = Callable[[Exception], Any]


class _RefreshEpisode:
    """State of one Refreshing period: the renewal task and its waiters.

    The coordinator is Refreshing exactly while it holds an episode, so the
    waiter queue cannot outlive the renewal it is waiting on.
    """

    def __init__(self, episode_id: int):
        self.episode_id = episode_id
        self.waiters: Deque[asyncio.Future] = deque()
        self.task: Optional[asyncio.Task] = None
        self.started_at = time.monotonic()

    def drain(self, pair: Optional[CredentialPair] = None,
              failure: Optional[BaseException] = None) -> int:
        """Settle every waiter in FIFO order; returns how many were settled.

        Waiters that were cancelled while queued are skipped.
        """
        settled = 0
        while self.waiters:
            future = self.waiters.popleft()
            if future.done():
                continue
            if failure is not None:
                future.set_exception(failure)
            else:
                future.set_result(pair)
            settled += 1
        return settled


class RefreshCoordinator:
    """Owns RefreshState and the waiter queue for one credential store."""

    def __init__(
        self,
        store: CredentialStore,
        transport: HttpTransport,
        refresh_path: str = "/client/auth/refresh",
        timeout_seconds: float = 30.0,
    ):
        self.store = store
        self.transport = transport
        self.refresh_path = refresh_path
        self.timeout_seconds = timeout_seconds

        self._episode: Optional[_RefreshEpisode] = None
        self._episode_counter = 0
        self._auth_failed_callback: Optional[AuthFailedCallback] = None

        self.renewals_started = 0
        self.renewals_succeeded = 0
        self.renewals_failed = 0

    @property
    def state(self) -> RefreshState:
        return RefreshState.REFRESHING if self._episode is not None else RefreshState.IDLE

    @property
    def is_refreshing(self) -> bool:
        return self._episode is not None

    @property
    def waiter_count(self) -> int:
        if self._episode is None:
            return 0
        return sum(1 for future in self._episode.waiters if not future.done())

    def set_auth_failed_callback(self, callback: AuthFailedCallback) -> None:
        """Register the listener told about unrecoverable auth failures."""
        self._auth_failed_callback = callback

    def clear_auth_failed_callback(self) -> None:
        self._auth_failed_callback = None

    async def acquire(self) -> CredentialPair:
        """Return a freshly renewed credential pair.

        Starts a renewal if none is in flight, otherwise waits for the one
        that is. Raises RenewalFailedError if the renewal fails.

        Cancelling the caller abandons only its own wait; the renewal keeps
        running for everyone else.
        """
        # No await between reading and installing the episode: the
        # Idle -> Refreshing flip and the enqueue below are atomic on the loop.
        episode = self._episode
        if episode is not None:
            future = asyncio.get_running_loop().create_future()
            episode.waiters.append(future)
            logger.debug(
                "Waiting on in-flight credential renewal",
                episode=episode.episode_id,
                position=len(episode.waiters),
            )
            return await future

        self._episode_counter += 1
        episode = _RefreshEpisode(self._episode_counter)
        self._episode = episode
        self.renewals_started += 1
        episode.task = asyncio.create_task(
            self._run_episode(episode), name=f"credential-renewal-{episode.episode_id}"
        )
        episode.task.add_done_callback(_consume_task_result)
        logger.info("Starting credential renewal", episode=episode.episode_id)
        return await asyncio.shield(episode.task)

    async def _run_episode(self, episode: _RefreshEpisode) -> CredentialPair:
        try:
            try:
                pair = await asyncio.wait_for(self._renew(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                raise RenewalFailedError(
                    f"Credential renewal timed out after {self.timeout_seconds}s",
                    details={"episode": episode.episode_id},
                ) from e
            except RenewalFailedError:
                raise
            except Exception as e:
                raise RenewalFailedError(
                    f"Credential renewal failed: {type(e).__name__}: {e}",
                    details={"episode": episode.episode_id},
                ) from e
        except RenewalFailedError as failure:
            await self._settle_failure(episode, failure)
            raise
        except asyncio.CancelledError:
            # Shutdown: release the waiters but keep the stored credentials
            settled = episode.drain(failure=RenewalFailedError("Credential renewal was cancelled"))
            self._episode = None
            logger.warning("Credential renewal cancelled", episode=episode.episode_id, waiters=settled)
            raise

        self._settle_success(episode, pair)
        return pair

    async def _renew(self) -> CredentialPair:
        """Exchange the stored refresh credential and persist the new pair."""
        refresh_token = await self.store.get_refresh_token()
        if not refresh_token:
            raise RenewalFailedError("No refresh token available")

        response = await self.transport.send(
            RequestDescriptor(
                method="POST",
                path=self.refresh_path,
                json=RenewalRequest(refresh_token=refresh_token).model_dump(),
            )
        )
        if not response.is_success:
            raise RenewalFailedError(
                f"Renewal endpoint returned status {response.status_code}",
                status_code=response.status_code,
                details={"detail": response.detail} if response.detail else None,
            )

        try:
            tokens = TokenResponse.model_validate(response.json())
        except ValueError as e:
            raise RenewalFailedError(
                "Renewal endpoint returned a malformed body",
                status_code=response.status_code,
            ) from e

        # Both credentials rotate; the old refresh token is no longer valid
        pair = tokens.to_pair()
        await self.store.set(pair)
        return pair

    def _settle_success(self, episode: _RefreshEpisode, pair: CredentialPair) -> None:
        settled = episode.drain(pair=pair)
        self._episode = None
        self.renewals_succeeded += 1
        logger.info(
            "Credential renewal succeeded",
            episode=episode.episode_id,
            waiters=settled,
            duration_ms=round((time.monotonic() - episode.started_at) * 1000, 2),
        )

    async def _settle_failure(self, episode: _RefreshEpisode, failure: RenewalFailedError) -> None:
        try:
            await self.store.clear()
        except Exception as e:
            logger.error("Could not clear credentials after failed renewal", error=e)
        finally:
            # Waiters are released and the state returns to Idle even if
            # the clear was cancelled
            settled = episode.drain(failure=failure)
            self._episode = None
            self.renewals_failed += 1
        logger.warning(
            "Credential renewal failed",
            episode=episode.episode_id,
            waiters=settled,
            status_code=failure.status_code,
            error=failure,
        )
        await self.notify_auth_failed(failure)

    async def notify_auth_failed(self, reason: Exception) -> None:
        """Tell the registered listener that the user must log in again."""
        callback = self._auth_failed_callback
        if callback is None:
            return
        try:
            result = callback(reason)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Auth-failed listener raised", error=e)

    def stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "waiters": self.waiter_count,
            "renewals_started": self.renewals_started,
            "renewals_succeeded": self.renewals_succeeded,
            "renewals_failed": self.renewals_failed,
        }

    async def aclose(self) -> None:
        """Cancel an in-flight renewal, if any, and wait for it to unwind."""
        episode = self._episode
        if episode is None or episode.task is None:
            return
        episode.task.cancel()
        try:
            await episode.task
        except (asyncio.CancelledError, RenewalFailedError):
            pass


def _consume_task_result(task: asyncio.Task) -> None:
    # The initiator may have been cancelled; mark the outcome as retrieved
    if not task.cancelled():
        task.exception()
