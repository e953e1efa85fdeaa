"""Error taxonomy for kai-bench.

Only `SinkWriteError` and `EmptyRunError` abort a run; everything else is
contained within a single question and surfaces as a recorded verdict.
"""


class BenchError(Exception):
  """Base class for harness errors."""


class Timeout(BenchError):
  """A bounded wait exceeded its limit."""


class RetryExhausted(Timeout):
  """A bounded retry loop gave up."""

  def __init__(self, what: str, attempts: int, last_error: Exception | None):
    self.what = what
    self.attempts = attempts
    self.last_error = last_error
    msg = f'{what} did not succeed after {attempts} attempts'
    if last_error is not None:
      msg += f': {last_error}'
    super().__init__(msg)


class ReferenceUnavailable(BenchError):
  """The reference table could not be extracted from the linked page."""


class ValidatorError(BenchError):
  """The answer validator returned something we cannot interpret."""


class EmptyRunError(BenchError):
  """No questions were configured, or a summary was requested over nothing."""


class SinkWriteError(BenchError, OSError):
  """The CSV result sink could not be written."""
