"""Core data structures for kai-bench.

Defines questions, per-question results, verdicts and the persisted record.
"""

import datetime
import enum
from dataclasses import dataclass, field

QuestionKey = str

CSV_COLUMNS = (
  'DateTime',
  'Question',
  'KaiAnswer',
  'IsAccurate',
  'ResponseTime',
  'AI Comment',
)


@dataclass(frozen=True)
class Question:
  """Canned question from the question bank."""

  key: QuestionKey
  question: str
  instructions: str = ''


@dataclass(frozen=True)
class QueryResult:
  """What Kai said for one question and how long it took.

  `timed` is False when no reply was measured (skipped, failed before the
  reply, or the wait hit its bound); such results stay out of latency stats.
  """

  question_key: QuestionKey
  question_text: str
  response_text: str
  elapsed_s: float
  timed: bool = True


@dataclass
class ReferenceDataset:
  """Table scraped from the page Kai linked to."""

  header: str
  rows: list[dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class Verdict:
  is_accurate: bool
  reason: str


class Outcome(enum.Enum):
  """Which path a question took through the runner."""

  VALIDATED = 'validated'
  REFUSED = 'refused'
  NO_DATA = 'no_data'
  REFERENCE_UNAVAILABLE = 'reference_unavailable'
  TIMEOUT = 'timeout'
  FAILED = 'failed'


@dataclass(frozen=True)
class QuestionOutcome:
  result: QueryResult
  verdict: Verdict
  outcome: Outcome


def format_timestamp(now: datetime.datetime) -> str:
  """Format like a US locale string, e.g. '5/6/2025, 9:36:04 AM'."""
  hour = now.hour % 12 or 12
  meridiem = 'AM' if now.hour < 12 else 'PM'
  return (
    f'{now.month}/{now.day}/{now.year}, '
    f'{hour}:{now.minute:02d}:{now.second:02d} {meridiem}'
  )


@dataclass(frozen=True)
class ResultRecord:
  """One CSV row. `is_accurate` is the literal string 'True' or 'False'.

  `response_time` is None (written as an empty cell) when nothing was timed.
  """

  timestamp: str
  question: str
  kai_answer: str
  is_accurate: str
  response_time: float | None
  ai_comment: str

  @classmethod
  def from_outcome(
    cls, qo: QuestionOutcome, now: datetime.datetime | None = None
  ) -> 'ResultRecord':
    now = now or datetime.datetime.now()
    return cls(
      timestamp=format_timestamp(now),
      question=qo.result.question_text,
      kai_answer=qo.result.response_text,
      is_accurate='True' if qo.verdict.is_accurate else 'False',
      response_time=(
        round(qo.result.elapsed_s, 3) if qo.result.timed else None
      ),
      ai_comment=qo.verdict.reason,
    )

  def to_row(self) -> dict[str, str | float]:
    return dict(
      zip(
        CSV_COLUMNS,
        (
          self.timestamp,
          self.question,
          self.kai_answer,
          self.is_accurate,
          '' if self.response_time is None else self.response_time,
          self.ai_comment,
        ),
      )
    )


@dataclass
class RunSummary:
  """Aggregate accuracy and timing for one run."""

  total: int
  correct: int
  accuracy_pct: float
  response_times: list[tuple[QuestionKey, float]]
  average_time_s: float | None
