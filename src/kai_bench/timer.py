"""Bounded waiting primitives.

ResponseTimer times an assistant reply, Deadline bounds a question or a run,
and retry_until polls eventually-consistent UI state with a fixed backoff.
"""

import time
from dataclasses import dataclass, field
from collections.abc import Callable
from typing import TypeVar

from .errors import RetryExhausted, Timeout

T = TypeVar('T')

Clock = Callable[[], float]
Sleep = Callable[[float], None]


@dataclass
class ResponseTimer:
  """Measure wall-clock time from a trigger until a completion signal.

  Args:
    max_wait_s: give up (raise `Timeout`) after this many seconds.
    poll_interval_s: delay between completion checks.
  """

  max_wait_s: float = 180.0
  poll_interval_s: float = 0.25
  clock: Clock = field(default=time.monotonic, repr=False)
  sleep: Sleep = field(default=time.sleep, repr=False)

  def measure(
    self,
    trigger: Callable[[], None],
    completion_signal: Callable[[], bool],
    max_wait_s: float | None = None,
  ) -> float:
    """Run `trigger` and return seconds until `completion_signal()` is True."""
    limit = self.max_wait_s if max_wait_s is None else min(
      self.max_wait_s, max_wait_s
    )
    t0 = self.clock()
    trigger()
    while True:
      if completion_signal():
        return self.clock() - t0
      elapsed = self.clock() - t0
      if elapsed >= limit:
        raise Timeout(f'no completion signal after {elapsed:.1f}s')
      self.sleep(min(self.poll_interval_s, max(0.0, limit - elapsed)))


@dataclass
class Deadline:
  """Countdown started at construction."""

  seconds: float
  clock: Clock = field(default=time.monotonic, repr=False)
  _start: float = field(init=False)

  def __post_init__(self) -> None:
    self._start = self.clock()

  def remaining(self) -> float:
    return max(0.0, self.seconds - (self.clock() - self._start))

  @property
  def expired(self) -> bool:
    return self.remaining() <= 0.0

  def check(self, what: str) -> None:
    """Raise `Timeout` if the deadline has passed."""
    if self.expired:
      raise Timeout(f'{what}: deadline of {self.seconds:.0f}s exceeded')


def retry_until(
  action: Callable[[], T],
  what: str,
  attempts: int = 3,
  interval_s: float = 2.0,
  accept: Callable[[T], bool] | None = None,
  on_retry: Callable[[int, Exception | None], None] | None = None,
  sleep: Sleep = time.sleep,
) -> T:
  """Call `action` until it returns an accepted value, at most `attempts` times.

  Exceptions from `action` count as failed attempts. Between attempts we
  call `on_retry(attempt, error)` (e.g. to reload the page) and sleep a
  fixed `interval_s`. Raises `RetryExhausted` when every attempt failed.
  """
  if attempts < 1:
    raise ValueError('attempts must be >= 1')
  last_error: Exception | None = None
  for attempt in range(1, attempts + 1):
    try:
      value = action()
      if accept is None or accept(value):
        return value
      last_error = None
    except Exception as e:
      last_error = e
    if attempt < attempts:
      if on_retry:
        on_retry(attempt, last_error)
      sleep(interval_s)
  raise RetryExhausted(what, attempts, last_error)
