import pytest

from conftest import FakeConsole
from kai_bench.config import BenchConfig
from kai_bench.data import Outcome, Verdict
from kai_bench.errors import EmptyRunError, ReferenceUnavailable, SinkWriteError
from kai_bench.harness import (
  REASON_NO_DATA,
  REASON_REFUSED,
  REASON_RUN_BUDGET,
  REASON_TIMEOUT,
  REASON_UNAVAILABLE,
  BenchmarkRunner,
  RunLogger,
)
from kai_bench.questions import QuestionBank
from kai_bench.recorder import read_records
from kai_bench.timer import ResponseTimer
from kai_bench.validator import StaticValidator

BANK = QuestionBank.from_dict(
  {
    'Q1': 'What is the top device?',
    'Q2': 'Which devices run Windows XP?',
    'Q3': 'Which certificates expired?',
    'Q4': 'How many blueprints exist?',
  }
)


def _runner(tmp_path, clock, console, keys, validator=None, **cfg_kw):
  cfg = BenchConfig(
    tenant_url='https://tenant.example',
    output_path=str(tmp_path / 'results.csv'),
    question_keys=keys,
    verbose=False,
    **cfg_kw,
  )
  timer = ResponseTimer(
    max_wait_s=cfg.response_timeout_s,
    poll_interval_s=0.5,
    clock=clock,
    sleep=clock.sleep,
  )
  return BenchmarkRunner(
    cfg,
    BANK,
    navigator=console,
    chat=console,
    tables=console,
    validator=validator or StaticValidator(Verdict(True, 'matches')),
    timer=timer,
    logger=RunLogger(str(tmp_path / 'run.log')),
  )


def _by_key(runner):
  return {o.result.question_key: o for o in runner.last_outcomes}


def test_validated_answer_recorded_true(tmp_path, clock, device_table):
  q = BANK.get('Q1').question
  console = FakeConsole(clock, {q: 'The top device is X'}, {q: device_table})
  validator = StaticValidator(Verdict(True, 'matches'))
  runner = _runner(tmp_path, clock, console, ['Q1'], validator=validator)
  summary = runner.run()

  assert summary.correct == 1 and summary.accuracy_pct == 100
  assert summary.response_times == [('Q1', 1.0)]
  # the judge gets what is left of the 300s question budget after a 1s reply
  assert validator.timeouts == [299.0]
  key, answer, reference = validator.calls[0]
  assert (key, answer) == ('Q1', 'The top device is X')
  assert reference.rows == [{'Device': 'X', 'OS': 'Linux'}]
  df = read_records(str(tmp_path / 'results.csv'))
  assert list(df['IsAccurate']) == ['True']
  assert list(df['AI Comment']) == ['matches']
  assert console.calls[:3] == ['go_to_start', 'open_assistant', f'send:{q}']


def test_refusal_skips_extraction(tmp_path, clock):
  q = BANK.get('Q1').question
  console = FakeConsole(clock, {q: "Sorry, I don't have that information"})
  validator = StaticValidator()
  runner = _runner(tmp_path, clock, console, ['Q1'], validator=validator)
  summary = runner.run()

  assert summary.correct == 0
  assert 'follow_reference_link' not in console.calls
  assert validator.calls == []
  df = read_records(str(tmp_path / 'results.csv'))
  assert list(df['IsAccurate']) == ['False']
  assert list(df['AI Comment']) == [REASON_REFUSED]
  assert (tmp_path / 'run.log').read_text().count('"event": "kai_skip"') == 1


def test_no_data_reported_counts_as_correct(tmp_path, clock):
  q = BANK.get('Q2').question
  console = FakeConsole(clock, {q: 'There are no devices matching your query'})
  runner = _runner(tmp_path, clock, console, ['Q2'])
  summary = runner.run()

  assert summary.correct == 1
  df = read_records(str(tmp_path / 'results.csv'))
  assert list(df['IsAccurate']) == ['True']
  assert 'empty result' in df['AI Comment'][0]
  assert df['AI Comment'][0] == REASON_NO_DATA


def test_column_reveal_failure_is_inaccurate(tmp_path, clock):
  q = BANK.get('Q3').question
  console = FakeConsole(
    clock,
    {q: 'Three certificates expired'},
    {q: ReferenceUnavailable('"All columns are visible" message did not appear')},
  )
  runner = _runner(tmp_path, clock, console, ['Q3'])
  summary = runner.run()

  assert summary.correct == 0
  df = read_records(str(tmp_path / 'results.csv'))
  assert list(df['IsAccurate']) == ['False']
  assert list(df['AI Comment']) == [REASON_UNAVAILABLE]


def test_validator_error_goes_down_extraction_failure_path(tmp_path, clock, device_table):
  class Boom(StaticValidator):
    def validate(self, question, answer, reference, timeout_s=None):
      raise RuntimeError('judge unreachable')

  q = BANK.get('Q1').question
  console = FakeConsole(clock, {q: 'The top device is X'}, {q: device_table})
  runner = _runner(tmp_path, clock, console, ['Q1'], validator=Boom())
  runner.run()
  df = read_records(str(tmp_path / 'results.csv'))
  assert list(df['AI Comment']) == [REASON_UNAVAILABLE]


def test_response_timeout_recorded_and_run_continues(tmp_path, clock, device_table):
  q1, q2 = BANK.get('Q1').question, BANK.get('Q2').question

  class Stuck(FakeConsole):
    def is_idle(self):
      if self._current == q1:
        return False
      return super().is_idle()

  console = Stuck(clock, {q1: 'still thinking', q2: 'The top device is X'}, {q2: device_table})
  runner = _runner(tmp_path, clock, console, ['Q1', 'Q2'], response_timeout_s=5)
  summary = runner.run()

  assert summary.total == 2 and summary.correct == 1
  # the timed-out wait is not a response time
  assert summary.response_times == [('Q2', 1.0)]
  assert summary.average_time_s == 1.0
  df = read_records(str(tmp_path / 'results.csv'))
  assert list(df['ResponseTime']) == ['', '1.0']
  assert list(df['AI Comment']) == [REASON_TIMEOUT, 'matches']
  assert list(df['KaiAnswer']) == ['still thinking', 'The top device is X']


def test_navigation_error_is_contained(tmp_path, clock, device_table):
  q2 = BANK.get('Q2').question

  class Flaky(FakeConsole):
    def open_assistant(self):
      super().open_assistant()
      if self.calls.count('open_assistant') == 1:
        raise RuntimeError('Kai launcher not found')

  console = Flaky(clock, {q2: 'XP-01'}, {q2: device_table})
  runner = _runner(tmp_path, clock, console, ['Q1', 'Q2'])
  summary = runner.run()
  assert summary.total == 2 and summary.correct == 1
  df = read_records(str(tmp_path / 'results.csv'))
  assert df['AI Comment'][0] == 'question failed: Kai launcher not found'


def test_question_deadline_treated_as_extraction_failure(tmp_path, clock, device_table):
  q = BANK.get('Q2').question
  console = FakeConsole(
    clock, {q: 'no records'}, {q: device_table}, busy_polls=0, nav_cost=10
  )
  runner = _runner(tmp_path, clock, console, ['Q2'], question_timeout_s=5)
  summary = runner.run()
  assert 'follow_reference_link' not in console.calls
  # the answer claims empty data, so the failed extraction still scores
  assert summary.correct == 1


def test_run_budget_still_records_every_question(tmp_path, clock, device_table):
  answers = {BANK.get(k).question: 'fine' for k in ('Q1', 'Q2', 'Q3')}
  console = FakeConsole(clock, answers, busy_polls=0, nav_cost=10)
  runner = _runner(
    tmp_path, clock, console, ['Q1', 'Q2', 'Q3'], run_timeout_s=5
  )
  summary = runner.run()
  assert summary.total == 3
  assert console.calls.count('go_to_start') == 1
  df = read_records(str(tmp_path / 'results.csv'))
  assert len(df) == 3
  assert list(df['AI Comment'])[1:] == [REASON_RUN_BUDGET, REASON_RUN_BUDGET]
  assert _by_key(runner)['Q3'].outcome is Outcome.TIMEOUT
  assert (tmp_path / 'run.log').read_text().count('"event": "kai_skip"') == 2


def test_skipped_questions_stay_out_of_average_time(tmp_path, clock):
  answers = {BANK.get(k).question: 'fine' for k in ('Q1', 'Q2', 'Q3')}
  # Q1 answers after 1s; navigation eats the rest of the 5s run budget, so Q2
  # hits its wait bound and Q3 is never asked.
  console = FakeConsole(clock, answers, nav_cost=3)
  runner = _runner(
    tmp_path, clock, console, ['Q1', 'Q2', 'Q3'], run_timeout_s=5
  )
  summary = runner.run()

  assert summary.total == 3
  assert summary.response_times == [('Q1', 1.0)]
  assert summary.average_time_s == 1.0
  outcomes = _by_key(runner)
  assert outcomes['Q2'].outcome is Outcome.TIMEOUT
  assert outcomes['Q3'].verdict.reason == REASON_RUN_BUDGET
  assert not outcomes['Q3'].result.timed
  df = read_records(str(tmp_path / 'results.csv'))
  assert list(df['ResponseTime']) == ['1.0', '', '']


def test_mixed_run_accuracy_and_record_count(tmp_path, clock, device_table):
  qs = {k: BANK.get(k).question for k in ('Q1', 'Q2', 'Q3', 'Q4')}
  console = FakeConsole(
    clock,
    {
      qs['Q1']: 'The top device is X',
      qs['Q2']: 'Sorry, I cannot answer',
      qs['Q3']: 'I was unable to find any certificates',
      qs['Q4']: 'There are 4',
    },
    {qs['Q1']: device_table},
  )
  runner = _runner(tmp_path, clock, console, ['Q1', 'Q2', 'Q3', 'Q4'])
  summary = runner.run()
  assert len(read_records(str(tmp_path / 'results.csv'))) == 4
  assert summary.correct == 2
  assert summary.accuracy_pct == 50
  assert summary.correct <= summary.total
  outcomes = _by_key(runner)
  assert outcomes['Q2'].outcome is Outcome.REFUSED
  assert outcomes['Q3'].outcome is Outcome.NO_DATA
  assert outcomes['Q4'].outcome is Outcome.REFERENCE_UNAVAILABLE
  assert (tmp_path / 'run.log').read_text().count('"event": "kai_answer"') == 4


def test_empty_run_rejected(tmp_path, clock):
  runner = _runner(tmp_path, clock, FakeConsole(clock, {}), [])
  with pytest.raises(EmptyRunError):
    runner.run()
  assert runner.logger._fh is None


def test_unknown_key_closes_run_log(tmp_path, clock):
  runner = _runner(tmp_path, clock, FakeConsole(clock, {}), ['Q1', 'Q99'])
  with pytest.raises(KeyError, match='Q99'):
    runner.run()
  assert runner.logger._fh is None
  assert not (tmp_path / 'results.csv').exists()


def test_sink_failure_aborts_run(tmp_path, clock):
  q = BANK.get('Q1').question
  console = FakeConsole(clock, {q: 'Sorry'})
  runner = _runner(tmp_path, clock, console, ['Q1', 'Q2'])
  (tmp_path / 'results.csv').mkdir()
  with pytest.raises(SinkWriteError):
    runner.run()
  assert console.calls.count('go_to_start') == 1
