"""
retune_progress.py

One-way message path from a processing run to whoever is watching it.

Messages, in the order a run produces them:
- Status(text)       any number of times
- Progress(fraction) any number of times, fraction in [0, 1]
- Outcome            exactly once, always last (Success or Failure)

The producer side never blocks and never fails: a full queue or a consumer
that stopped listening just means the message is dropped. The terminal
outcome is the exception: it is held back until there is room, so a poller
always sees it. A foreground consumer that raises is detached and the run
carries on without it.

Two ways to consume the same channel:
- foreground: pass `consumer=` and the pipeline calls pump() between steps
  (CLI printer, runs on the processing thread)
- background: the run lives on a worker thread and a UI loop calls drain()
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Status:
    text: str


@dataclass(frozen=True)
class Progress:
    fraction: float

    def __post_init__(self):
        object.__setattr__(self, "fraction", float(min(1.0, max(0.0, self.fraction))))


@dataclass(frozen=True)
class Outcome:
    @property
    def ok(self) -> bool:
        return isinstance(self, Success)


@dataclass(frozen=True)
class Success(Outcome):
    samples_processed: int
    duration_ms: float


@dataclass(frozen=True)
class Failure(Outcome):
    message: str


Message = Union[Status, Progress, Outcome]


class ProgressChannel:
    def __init__(self, maxsize: int = 0, consumer: Optional[Callable[[Message], None]] = None):
        self._q: "queue.Queue[Message]" = queue.Queue(maxsize=int(maxsize))
        self._lock = threading.Lock()
        self._closed = False
        self._finished = False
        self._held: Optional[Outcome] = None
        self.consumer = consumer
        self.outcome: Optional[Outcome] = None
        self.done = False

    # ---- producer side ----
    def send(self, msg: Message) -> None:
        if self._closed or self._finished:
            return
        try:
            self._q.put_nowait(msg)
        except queue.Full:
            pass

    def status(self, text: str) -> None:
        self.send(Status(str(text)))

    def progress(self, fraction: float) -> None:
        self.send(Progress(fraction))

    def finish(self, outcome: Outcome) -> None:
        with self._lock:
            if self._finished:
                return
            self._finished = True
            self.outcome = outcome
            if self._closed:
                return
            try:
                self._q.put_nowait(outcome)
            except queue.Full:
                self._held = outcome
        self.pump()

    def pump(self) -> None:
        """Hand queued messages to the foreground consumer, if there is one."""
        if self.consumer is None:
            return
        for msg in self.drain():
            try:
                self.consumer(msg)
            except Exception as e:
                # consumer gone (closed stdout, dead UI); stop delivering
                logger.warning("Progress consumer failed, dropping further messages: %s", e)
                self.consumer = None
                self._closed = True
                return

    # ---- consumer side ----
    def _release_held(self) -> None:
        # a slot was just freed; the held outcome takes it
        with self._lock:
            if self._held is None:
                return
            try:
                self._q.put_nowait(self._held)
            except queue.Full:
                return
            self._held = None

    def drain(self) -> List[Message]:
        out: List[Message] = []
        while True:
            try:
                out.append(self._q.get_nowait())
            except queue.Empty:
                break
        with self._lock:
            if self._held is not None:
                out.append(self._held)
                self._held = None
        if out and isinstance(out[-1], Outcome):
            self.done = True
        return out

    def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Blocking read of the next message; None on timeout."""
        with self._lock:
            if self._held is not None and self._q.empty():
                msg: Optional[Message] = self._held
                self._held = None
                self.done = True
                return msg
        try:
            msg = self._q.get(timeout=timeout)
        except queue.Empty:
            return None
        self._release_held()
        if isinstance(msg, Outcome):
            self.done = True
        return msg

    def close(self) -> None:
        self._closed = True
