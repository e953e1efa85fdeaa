import pytest

from kai_bench.data import ReferenceDataset
from kai_bench.errors import ReferenceUnavailable


class FakeClock:
  def __init__(self) -> None:
    self.now = 0.0

  def __call__(self) -> float:
    return self.now

  def sleep(self, s: float) -> None:
    self.now += s


class FakeConsole:
  """Scripted stand-in for the browser: one canned answer per question text."""

  def __init__(self, clock, answers, tables=None, busy_polls=2, nav_cost=0.0):
    self.clock = clock
    self.answers = answers
    self.tables = tables or {}
    self.busy_polls = busy_polls
    self.nav_cost = nav_cost
    self.calls: list[str] = []
    self._current = None
    self._polls = 0

  def go_to_start(self):
    self.calls.append('go_to_start')
    self.clock.now += self.nav_cost

  def open_assistant(self):
    self.calls.append('open_assistant')

  def send(self, text):
    self.calls.append(f'send:{text}')
    self._current = text
    self._polls = 0

  def is_idle(self):
    self._polls += 1
    return self.busy_polls is not None and self._polls > self.busy_polls

  def read_latest_response(self):
    return self.answers[self._current]

  def follow_reference_link(self):
    self.calls.append('follow_reference_link')
    if self.tables.get(self._current) is None:
      raise ReferenceUnavailable('response has no reference link')

  def reveal_all_columns(self):
    self.calls.append('reveal_all_columns')
    table = self.tables.get(self._current)
    if isinstance(table, Exception):
      raise table
    return 0

  def read_table(self):
    self.calls.append('read_table')
    return self.tables[self._current]


@pytest.fixture
def clock():
  return FakeClock()


@pytest.fixture
def device_table():
  return ReferenceDataset(
    header='Devices', rows=[{'Device': 'X', 'OS': 'Linux'}]
  )
