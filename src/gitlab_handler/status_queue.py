"""
Serialized dispatch of commit statuses to GitLab.

All status posts, across every project, go through one queue with a
single worker: one call in flight at a time, in submission order. A task
starts only after the previous one finished, whatever its outcome.
"""

import asyncio
import re
from typing import Any, Awaitable, Callable, Optional, Tuple

from .gitlab_client import AsyncGitLabClient
from .models import Project, StatusInfo, StatusUpdate
from .utils.exceptions import DispatchError, GitLabAPIError, InvalidStatusError
from .utils.logger import get_logger

logger = get_logger(__name__)

QueueTask = Callable[[], Awaitable[Any]]

# GitLab only limits description length; it does not truncate for us.
MAX_DESCRIPTION_LENGTH = 140

STATE_MAP = {
    "running": "running",
    "pending": "pending",
    "success": "success",
    "error": "failed",
    "failure": "failed",
}

_TRANSITION_CONFLICT = re.compile(r"Cannot transition status via :\w+ from :\w+")


def map_state(state: Optional[str]) -> str:
    """
    Map a build system state to a GitLab status state.

    Raises:
        InvalidStatusError: For states with no GitLab equivalent
    """
    try:
        return STATE_MAP[state]
    except (KeyError, TypeError):
        raise InvalidStatusError(state)


def build_status_info(update: StatusUpdate) -> StatusInfo:
    """Map and truncate a status update for dispatch."""
    return StatusInfo(
        state=map_state(update.state),
        description=(update.description or "")[:MAX_DESCRIPTION_LENGTH],
        context=update.context,
        target_url=update.target_url,
    )


def is_transition_conflict(error: BaseException) -> bool:
    """
    Whether GitLab rejected a status because the commit is already in it.

    Re-posting ``running`` on a running commit yields
    ``Cannot transition status via :run from :running``.
    """
    if isinstance(error, GitLabAPIError):
        text = error.description
    else:
        text = str(error)
    return bool(_TRANSITION_CONFLICT.search(text or ""))


class StatusDispatchQueue:
    """
    Single-worker FIFO queue for outbound status calls.

    ``submit`` returns a future that resolves with the task's result or
    exception. The worker keeps running after a failed task.
    """

    def __init__(self, gitlab: AsyncGitLabClient):
        self.gitlab = gitlab
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        """Number of tasks waiting to run."""
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def running(self) -> bool:
        if self._worker is None or self._worker.done():
            return False
        try:
            return self._worker.get_loop() is asyncio.get_running_loop()
        except RuntimeError:
            return False

    def start(self) -> None:
        """Start the worker. Called lazily by ``submit``."""
        if self.running:
            return
        # A worker from a closed event loop leaves a queue bound to that loop
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(), name="status-dispatch-worker")
        logger.debug("Status dispatch worker started")

    async def stop(self) -> None:
        """Stop the worker. Queued tasks that have not started are cancelled."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                if not future.done():
                    future.cancel()
            self._queue = None
        logger.debug("Status dispatch worker stopped")

    def submit(self, task: QueueTask) -> "asyncio.Future[Any]":
        """Queue a zero-argument coroutine function."""
        self.start()
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((task, future))
        return future

    def enqueue_status(self, project: Project, sha: str, status: StatusInfo) -> "asyncio.Future[Any]":
        """Queue a GitLab status post for a commit."""
        return self.submit(lambda: self._dispatch(project, sha, status))

    async def _dispatch(self, project: Project, sha: str, status: StatusInfo) -> Any:
        try:
            return await self.gitlab.post_status(project, sha, status)
        except GitLabAPIError as e:
            if is_transition_conflict(e):
                logger.info(
                    "Status already in requested state",
                    extra={"slug": project.slug, "sha": sha, "state": status.state},
                )
                return None
            raise DispatchError(
                f"GitLab rejected status for {sha}: {e.description}",
                sha=sha,
                context=status.context,
                last_error=e,
            ) from e

    async def _run(self) -> None:
        while True:
            item: Tuple[QueueTask, asyncio.Future] = await self._queue.get()
            task, future = item
            try:
                result = await task()
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as e:
                logger.error(
                    "Status dispatch task failed",
                    extra={"error_type": type(e).__name__, "error_message": str(e)},
                )
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()
