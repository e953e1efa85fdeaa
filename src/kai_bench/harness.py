"""Benchmark harness for asking Kai a question set.

Handles asking, timing, classification, reference extraction, validation,
per-question logging and CSV persistence.
"""

import json
import os
import sys
import time
from dataclasses import dataclass, field
from typing import Any

from .classifier import Category, ResponseClassifier
from .config import BenchConfig
from .console import Chat, Navigator, TableExtractor
from .data import (
  Outcome,
  Question,
  QuestionOutcome,
  QueryResult,
  ResultRecord,
  RunSummary,
  Verdict,
)
from .errors import EmptyRunError, Timeout
from .questions import QuestionBank
from .recorder import ResultRecorder, format_summary, summarize
from .timer import Deadline, ResponseTimer
from .validator import AnswerValidator

REASON_REFUSED = 'assistant could not answer'
REASON_NO_DATA = 'assistant correctly reported no data (empty result)'
REASON_UNAVAILABLE = 'reference data unavailable or mismatched page'
REASON_TIMEOUT = 'timed out waiting for assistant response'
REASON_RUN_BUDGET = 'run time budget exhausted before this question'


@dataclass(slots=True)
class RunLogger:
  """Tee logger that writes JSON lines to a file and prints pretty console lines."""

  path: str | None
  enabled: bool = True
  stdout_format: str = 'auto'  # "auto" | "json" | "pretty"
  max_question: int = 96
  _fh: Any | None = field(init=False, default=None)
  _t0: float = field(init=False, default_factory=time.time)
  _line_no: int = field(init=False, default=0)
  _use_color: bool = field(init=False, default=False)
  _use_pretty: bool = field(init=False, default=False)

  def __post_init__(self) -> None:
    """Initialize sinks and console mode."""
    if self.enabled and self.path:
      self._fh = open(self.path, 'a', encoding='utf-8')

    if self.stdout_format == 'pretty':
      self._use_pretty = True
    elif self.stdout_format == 'json':
      self._use_pretty = False
    else:  # auto
      self._use_pretty = sys.stdout.isatty()

    self._use_color = (
      self._use_pretty
      and sys.stdout.isatty()
      and os.environ.get('NO_COLOR') is None
      and os.environ.get('TERM') not in {'dumb', None}
    )

  # ---------- Public API ----------

  def log(self, record: dict[str, Any]) -> None:
    """Emit one record to console (pretty or JSON) and to file as JSONL."""
    if not self.enabled:
      return

    line_json = json.dumps(record, ensure_ascii=False)
    if self._fh:
      self._fh.write(line_json + '\n')
      self._fh.flush()

    if self._use_pretty:
      print(self._format_pretty_line(record))
    else:
      print(line_json)

    sys.stdout.flush()

  def close(self) -> None:
    """Close file handle if open."""
    if self._fh:
      self._fh.close()
      self._fh = None

  # ---------- Pretty formatting ----------

  def _format_pretty_line(self, r: dict[str, Any]) -> str:
    """Render a compact one-liner for humans."""
    self._line_no += 1
    t_rel = self._style(self._since_start(), 'grey')
    n = self._style(f'{self._line_no:04d}', 'grey')

    event = r.get('event', 'info')
    if event == 'kai_answer':
      return self._fmt_answer(n, t_rel, r)
    if event == 'kai_skip':
      return self._fmt_skip(n, t_rel, r)
    if event == 'kai_error':
      return self._fmt_error(n, t_rel, r)
    if event == 'summary':
      return self._fmt_summary(n, t_rel, r)
    if event == 'interrupt':
      q = self._clip(r.get('question', ''), self.max_question)
      return f'{n} {t_rel} 🛑  KeyboardInterrupt  ❓ “{q}”'
    return f'{n} {t_rel} ℹ️  {json.dumps(r, ensure_ascii=False)}'

  def _fmt_answer(self, n: str, t: str, r: dict[str, Any]) -> str:
    ok = bool(r.get('accurate'))
    check = self._style('✅' if ok else '❌', 'green' if ok else 'red', bold=True)
    elapsed = r.get('elapsed_s')
    q = self._clip(r.get('question', ''), self.max_question)
    parts = [
      f'{n} {t} 🤖 {check}',
      f'⏱ {elapsed:.3f}s' if isinstance(elapsed, (int, float)) else '⏱ —',
      f'🪪 {r.get("key", "-")}',
      f'🔍 {r.get("outcome", "-")}',
      f'❓ “{q}”',
      f'→ {self._style(r.get("reason", ""), "cyan")}',
    ]
    return '  '.join(parts)

  def _fmt_skip(self, n: str, t: str, r: dict[str, Any]) -> str:
    q = self._clip(r.get('question', ''), self.max_question)
    return '  '.join(
      [
        f'{n} {t} ⏭  {self._style(r.get("outcome", "skip"), "yellow", bold=True)}',
        f'🪪 {r.get("key", "-")}',
        f'❓ “{q}”',
        f'→ {self._style(r.get("reason", ""), "yellow")}',
      ]
    )

  def _fmt_error(self, n: str, t: str, r: dict[str, Any]) -> str:
    return '  '.join(
      [
        f'{n} {t} 💥 {self._style(r.get("stage", "error"), "red", bold=True)}',
        f'🪪 {r.get("key", "-")}',
        f'→ {self._style(r.get("error", "unknown error"), "red")}',
      ]
    )

  def _fmt_summary(self, n: str, t: str, r: dict[str, Any]) -> str:
    acc = r.get('accuracy_pct', 0.0)
    avg = r.get('average_time_s')
    avg_text = f'{avg:.2f}s' if isinstance(avg, (int, float)) else 'n/a'
    return (
      f'{n} {t} 📊 {r.get("correct")}/{r.get("total")} correct  '
      f'{self._style(f"{acc:.2f}%", "magenta", bold=True)}  avg ⏱ {avg_text}'
    )

  # ---------- Small helpers ----------

  def _since_start(self) -> str:
    """Format elapsed time since logger start."""
    dt = time.time() - self._t0
    if dt < 60:
      return f'+{dt:05.2f}s'
    m, s = divmod(int(dt), 60)
    return f'+{m:02d}m{s:02d}s'

  def _clip(self, text: str, width: int) -> str:
    """Truncate a long string with an ellipsis."""
    return text if len(text) <= width else text[: max(0, width - 1)] + '…'

  def _style(self, s: str, color: str, bold: bool = False) -> str:
    """Apply ANSI color/bold if enabled."""
    if not self._use_color:
      return s
    codes = {
      'grey': '90',
      'red': '31',
      'green': '32',
      'yellow': '33',
      'magenta': '35',
      'cyan': '36',
    }
    parts = []
    if bold:
      parts.append('1')
    c = codes.get(color)
    if c:
      parts.append(c)
    if not parts:
      return s
    return f'\033[{";".join(parts)}m{s}\033[0m'


@dataclass
class RunTally:
  """Accumulator for one run; `total` is fixed when the run starts."""

  total: int
  correct: int = 0
  outcomes: list[QuestionOutcome] = field(default_factory=list)

  def add(self, qo: QuestionOutcome) -> None:
    self.outcomes.append(qo)
    if qo.verdict.is_accurate:
      self.correct += 1

  @property
  def accuracy_pct(self) -> float:
    return self.correct / self.total * 100 if self.total else 0.0


class BenchmarkRunner:
  """Ask every configured question in order and record one row per question."""

  def __init__(
    self,
    cfg: BenchConfig,
    bank: QuestionBank,
    navigator: Navigator,
    chat: Chat,
    tables: TableExtractor,
    validator: AnswerValidator,
    recorder: ResultRecorder | None = None,
    classifier: ResponseClassifier | None = None,
    timer: ResponseTimer | None = None,
    logger: RunLogger | None = None,
  ) -> None:
    self.cfg = cfg
    self.bank = bank
    self.navigator = navigator
    self.chat = chat
    self.tables = tables
    self.validator = validator
    self.recorder = recorder or ResultRecorder(cfg.output_path)
    self.classifier = classifier or ResponseClassifier()
    self.timer = timer or ResponseTimer(max_wait_s=cfg.response_timeout_s)
    self.logger = logger or RunLogger(None, enabled=cfg.verbose)
    self.last_outcomes: list[QuestionOutcome] = []

  def run(self) -> RunSummary:
    """Run the whole question set. Only sink failures abort the loop.

    The logger is closed on every exit, including configuration errors.
    """
    try:
      if not self.cfg.question_keys:
        raise EmptyRunError('no question keys configured')
      # Resolve every key up front so a typo fails before the browser work.
      questions = [self.bank.get(k) for k in self.cfg.question_keys]
      clock = self.timer.clock
      run_deadline = Deadline(self.cfg.run_timeout_s, clock=clock)
      tally = RunTally(total=len(questions))
      self.last_outcomes = tally.outcomes
      for q in questions:
        if run_deadline.expired:
          qo = QuestionOutcome(
            QueryResult(q.key, q.question, '', 0.0, timed=False),
            Verdict(False, REASON_RUN_BUDGET),
            Outcome.TIMEOUT,
          )
          self._log_skip(qo)
        else:
          budget = min(self.cfg.question_timeout_s, run_deadline.remaining())
          try:
            qo = self.ask(q, Deadline(budget, clock=clock))
          except KeyboardInterrupt:
            self.logger.log(
              {'event': 'interrupt', 'key': q.key, 'question': q.question}
            )
            raise
        self.recorder.append(ResultRecord.from_outcome(qo))
        tally.add(qo)
        self._log_outcome(qo, tally)

      summary = summarize(tally.outcomes)
      self.logger.log(
        {
          'event': 'summary',
          'total': summary.total,
          'correct': summary.correct,
          'accuracy_pct': round(summary.accuracy_pct, 2),
          'average_time_s': (
            None
            if summary.average_time_s is None
            else round(summary.average_time_s, 2)
          ),
          'response_times': summary.response_times,
        }
      )
      if self.cfg.verbose:
        print(format_summary(summary))
    finally:
      self.logger.close()
    return summary

  def ask(self, q: Question, deadline: Deadline) -> QuestionOutcome:
    """Take one question from a fresh page to a verdict. Never raises Exception."""
    clock = self.timer.clock
    started: float | None = None
    try:
      deadline.check('navigation')
      self.navigator.go_to_start()
      self.navigator.open_assistant()
      started = clock()
      elapsed = self.timer.measure(
        lambda: self.chat.send(q.question),
        self.chat.is_idle,
        max_wait_s=deadline.remaining(),
      )
      text = self.chat.read_latest_response()
    except Timeout as e:
      self._log_error(q, 'response', e)
      elapsed = clock() - started if started is not None else 0.0
      return QuestionOutcome(
        QueryResult(
          q.key, q.question, self._partial_response(), elapsed, timed=False
        ),
        Verdict(False, REASON_TIMEOUT),
        Outcome.TIMEOUT,
      )
    except Exception as e:
      self._log_error(q, 'ask', e)
      elapsed = clock() - started if started is not None else 0.0
      return QuestionOutcome(
        QueryResult(q.key, q.question, '', elapsed, timed=False),
        Verdict(False, f'question failed: {e}'),
        Outcome.FAILED,
      )

    result = QueryResult(q.key, q.question, text, elapsed)
    if self.classifier.classify(text) is Category.FAILURE:
      qo = QuestionOutcome(
        result, Verdict(False, REASON_REFUSED), Outcome.REFUSED
      )
      self._log_skip(qo)
      return qo

    try:
      deadline.check('reference link')
      self.tables.follow_reference_link()
      deadline.check('column reveal')
      self.tables.reveal_all_columns()
      deadline.check('table read')
      reference = self.tables.read_table()
      deadline.check('validation')
      verdict = self.validator.validate(
        q, text, reference, timeout_s=deadline.remaining()
      )
    except Exception as e:
      self._log_error(q, 'reference', e)
      if (
        self.classifier.classify(text, extraction_failed=True)
        is Category.EMPTY_RESULT
      ):
        return QuestionOutcome(
          result, Verdict(True, REASON_NO_DATA), Outcome.NO_DATA
        )
      return QuestionOutcome(
        result,
        Verdict(False, REASON_UNAVAILABLE),
        Outcome.REFERENCE_UNAVAILABLE,
      )
    return QuestionOutcome(result, verdict, Outcome.VALIDATED)

  def _partial_response(self) -> str:
    """Whatever Kai has rendered so far; empty if even that fails."""
    try:
      return self.chat.read_latest_response()
    except Exception:
      return ''

  def _log_error(self, q: Question, stage: str, e: Exception) -> None:
    self.logger.log(
      {
        'event': 'kai_error',
        'key': q.key,
        'stage': stage,
        'error': f'{type(e).__name__}: {e}',
      }
    )

  def _log_skip(self, qo: QuestionOutcome) -> None:
    """Note a question whose reference extraction and validation were skipped."""
    self.logger.log(
      {
        'event': 'kai_skip',
        'key': qo.result.question_key,
        'question': qo.result.question_text,
        'outcome': qo.outcome.value,
        'reason': qo.verdict.reason,
      }
    )

  def _log_outcome(self, qo: QuestionOutcome, tally: RunTally) -> None:
    self.logger.log(
      {
        'event': 'kai_answer',
        'key': qo.result.question_key,
        'question': qo.result.question_text,
        'answer': qo.result.response_text,
        'accurate': qo.verdict.is_accurate,
        'reason': qo.verdict.reason,
        'outcome': qo.outcome.value,
        'elapsed_s': (
          round(qo.result.elapsed_s, 3) if qo.result.timed else None
        ),
        'running_accuracy_pct': round(tally.accuracy_pct, 2),
      }
    )
