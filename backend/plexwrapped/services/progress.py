"""Progress line vocabulary and the job → streamed-response bridge.

Long-running jobs report through an async sink of free-form lines. The UI
parses the leading prefix, so every structured line starts with one of the
constants below.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from plexwrapped.errors import Cancelled, WrappedError

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], Awaitable[None]]

INFO = "INFO:"
WARN = "WARN:"
ERROR = "ERROR:"
DONE = "DONE:"
PROGRESS = "PROGRESS:"
MONTH_START = "MONTH_START:"
SYNC_COMPLETE = "SYNC_COMPLETE:"
GENERATING = "GENERATING:"

# Streamed jobs outlive the request when the client disconnects; hold a
# reference until they observe the cancel event and finish.
_detached: set[asyncio.Task] = set()


async def emit(sink: Optional[ProgressSink], message: str) -> None:
    if sink is not None:
        await sink(message)


async def stream_job(
    job: Callable[[ProgressSink, asyncio.Event], Awaitable[Any]],
    on_done: Optional[Callable[[Any], Optional[str]]] = None,
) -> AsyncIterator[str]:
    """Run ``job(sink, cancel)`` and yield its progress lines.

    When the consumer stops iterating (client disconnect), the job's cancel
    event is set and the job is left to stop at its next checkpoint.
    A Cancelled job ends the stream quietly; any other failure becomes one
    ``ERROR:`` line.
    """
    queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
    cancel = asyncio.Event()

    async def sink(message: str) -> None:
        await queue.put(message)

    async def runner() -> None:
        try:
            result = await job(sink, cancel)
            if on_done is not None:
                line = on_done(result)
                if line:
                    await queue.put(line)
        except Cancelled:
            logger.info("Streamed job cancelled")
        except WrappedError as e:
            logger.warning(f"Streamed job stopped: {e}")
            await queue.put(f"{ERROR}{e}")
        except Exception as e:
            logger.exception("Streamed job failed")
            await queue.put(f"{ERROR}{str(e) or type(e).__name__}")
        finally:
            await queue.put(None)

    task = asyncio.create_task(runner())
    _detached.add(task)
    task.add_done_callback(_detached.discard)
    try:
        while True:
            line = await queue.get()
            if line is None:
                break
            yield line + "\n"
    finally:
        if not task.done():
            cancel.set()
