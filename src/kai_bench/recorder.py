"""CSV result sink and run summaries.

The sink is append-only and shared across runs; the header is written once,
when the file is created.
"""

import csv
import os
from collections.abc import Sequence

import pandas as pd
from tabulate import tabulate

from .data import CSV_COLUMNS, QuestionOutcome, ResultRecord, RunSummary
from .errors import EmptyRunError, SinkWriteError


class ResultRecorder:
  """Append ResultRecords to a CSV file."""

  def __init__(self, path: str) -> None:
    self.path = path
    self.written = 0

  def append(self, record: ResultRecord) -> None:
    """Write one row and flush it to disk. Raises SinkWriteError on failure."""
    try:
      parent = os.path.dirname(self.path)
      if parent:
        os.makedirs(parent, exist_ok=True)
      write_header = (
        not os.path.exists(self.path) or os.path.getsize(self.path) == 0
      )
      with open(self.path, 'a', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=list(CSV_COLUMNS))
        if write_header:
          writer.writeheader()
        writer.writerow(record.to_row())
        f.flush()
        os.fsync(f.fileno())  # progress must survive Ctrl-C
    except OSError as e:
      raise SinkWriteError(f'cannot write results to {self.path}: {e}') from e
    self.written += 1


def read_records(path: str) -> pd.DataFrame:
  """Load the sink with every column kept as the verbatim string."""
  return pd.read_csv(path, dtype=str, keep_default_na=False)


def summarize(outcomes: Sequence[QuestionOutcome]) -> RunSummary:
  """Aggregate accuracy and timing over one run's outcomes."""
  if not outcomes:
    raise EmptyRunError('cannot summarize a run with no questions')
  total = len(outcomes)
  correct = sum(1 for o in outcomes if o.verdict.is_accurate)
  # Untimed questions count toward accuracy but not toward latency.
  times = [
    (o.result.question_key, o.result.elapsed_s)
    for o in outcomes
    if o.result.timed
  ]
  return RunSummary(
    total=total,
    correct=correct,
    accuracy_pct=correct / total * 100,
    response_times=times,
    average_time_s=sum(t for _, t in times) / len(times) if times else None,
  )


def format_summary(summary: RunSummary) -> str:
  """Render the end-of-run response time report for the console."""
  avg = (
    'n/a'
    if summary.average_time_s is None
    else f'{summary.average_time_s:.2f}s'
  )
  table = tabulate(
    [(f'Question {k}', f'{t:.3f}s') for k, t in summary.response_times],
    headers=['Question', 'Response time'],
    tablefmt='simple',
  )
  return '\n'.join(
    [
      '',
      '=== Response Time Report ===',
      table,
      f'Average Response Time: {avg}',
      f'Correct answers: {summary.correct}/{summary.total}',
      f'Kai Accuracy: {summary.accuracy_pct:.2f}%',
    ]
  )
