"""Browser collaborators for the benchmark.

The runner only needs the three small protocols below. PlaywrightConsole
implements all of them against the live Visibility console.
"""

import contextlib
from dataclasses import dataclass, fields
from collections.abc import Iterator
from typing import Protocol

from playwright.sync_api import (
  Locator,
  Page,
  TimeoutError as PlaywrightTimeoutError,
  expect,
  sync_playwright,
)

from .data import ReferenceDataset
from .errors import ReferenceUnavailable
from .timer import retry_until


class Navigator(Protocol):
  def go_to_start(self) -> None: ...

  def open_assistant(self) -> None: ...


class Chat(Protocol):
  def send(self, text: str) -> None: ...

  def is_idle(self) -> bool: ...

  def read_latest_response(self) -> str: ...


class TableExtractor(Protocol):
  def follow_reference_link(self) -> None: ...

  def reveal_all_columns(self) -> int: ...

  def read_table(self) -> ReferenceDataset: ...


@dataclass(frozen=True)
class ConsoleLocators:
  """CSS/XPath selectors for the console. Override per tenant build."""

  kai_launcher: str = '[data-testid="kai-launcher"]'
  chat_input: str = '[data-testid="kai-chat-input"]'
  send_button: str = '[data-testid="kai-send-button"]'
  loading_indicator: str = '[data-testid="kai-loading"]'
  latest_response: str = '[data-testid="kai-response"]'
  reference_link: str = '[data-testid="kai-response"] a[href*="prism"]'
  leave_without_saving: str = 'role=button[name="Leave without saving"]'
  edit_columns_button: str = 'role=button[name="Edit Columns"]'
  add_hidden_column_button: str = '[data-testid="add-hidden-column"]'
  apply_button: str = 'role=button[name="Apply"]'
  all_columns_visible: str = '//h1[contains(text(), "All columns are visible")]'
  page_header: str = '[data-testid="page-header-small"]'

  @classmethod
  def from_dict(cls, raw: dict[str, str]) -> 'ConsoleLocators':
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
      raise ValueError(f'Unknown locator names: {sorted(unknown)}')
    return cls(**raw)


def table_rows(table: Locator) -> list[dict[str, str]]:
  """Read a rendered table into rows keyed by column header."""
  headers = [h.strip() for h in table.locator('thead th').all_inner_texts()]
  rows: list[dict[str, str]] = []
  for tr in table.locator('tbody tr').all():
    cells = [c.strip() for c in tr.locator('td').all_inner_texts()]
    if not any(cells):
      continue
    rows.append({h: cells[i] if i < len(cells) else '' for i, h in enumerate(headers)})
  return rows


def table_under(header: Locator) -> Locator:
  """First table inside the nearest ancestor of `header` that contains one."""
  return header.locator('xpath=ancestor::*[.//table][1]').locator('table').first


class PlaywrightConsole:
  """Navigation, chat, and table extraction on one Playwright page."""

  def __init__(
    self,
    page: Page,
    tenant_url: str,
    locators: ConsoleLocators | None = None,
    action_timeout_s: float = 15.0,
    settle_s: float = 1.0,
    indicator_appear_s: float = 5.0,
    max_hidden_columns: int = 100,
    table_attempts: int = 3,
  ) -> None:
    self.page = page
    self.tenant_url = tenant_url
    self.loc = locators or ConsoleLocators()
    self.action_timeout_ms = action_timeout_s * 1000
    self.settle_ms = settle_s * 1000
    self.indicator_appear_ms = indicator_appear_s * 1000
    self.max_hidden_columns = max_hidden_columns
    self.table_attempts = table_attempts
    page.set_default_timeout(self.action_timeout_ms)

  # ---------- Navigator ----------

  def go_to_start(self) -> None:
    self.page.goto(self.tenant_url)

  def open_assistant(self) -> None:
    self.page.locator(self.loc.kai_launcher).first.click()
    expect(self.page.locator(self.loc.chat_input).first).to_be_visible(
      timeout=self.action_timeout_ms
    )

  # ---------- Chat ----------

  def send(self, text: str) -> None:
    """Type the question and click send.

    Waits briefly for the loading indicator to show up so that `is_idle`
    does not report completion before Kai has started working.
    """
    self.page.locator(self.loc.chat_input).first.fill(text)
    self.page.locator(self.loc.send_button).first.click()
    try:
      self.page.locator(self.loc.loading_indicator).first.wait_for(
        state='visible', timeout=self.indicator_appear_ms
      )
    except PlaywrightTimeoutError:
      pass  # fast replies can finish before the indicator renders

  def is_idle(self) -> bool:
    return not self.page.locator(self.loc.loading_indicator).first.is_visible()

  def read_latest_response(self) -> str:
    return self.page.locator(self.loc.latest_response).last.inner_text()

  # ---------- TableExtractor ----------

  def follow_reference_link(self) -> None:
    links = self.page.locator(self.loc.reference_link)
    if links.count() == 0:
      raise ReferenceUnavailable('response has no reference link')
    links.first.click()
    leave = self.page.locator(self.loc.leave_without_saving)
    if leave.is_visible():
      leave.click()
      self.page.wait_for_timeout(self.settle_ms)

  def reveal_all_columns(self) -> int:
    """Add hidden columns until none remain, then apply.

    Returns the number of columns revealed. Raises ReferenceUnavailable if
    the "All columns are visible" state is never reached.
    """
    self.page.locator(self.loc.edit_columns_button).first.click()
    self.page.wait_for_timeout(self.settle_ms)
    add_hidden = self.page.locator(self.loc.add_hidden_column_button).first
    for revealed in range(self.max_hidden_columns + 1):
      if not add_hidden.is_visible():
        try:
          expect(self.page.locator(self.loc.all_columns_visible)).to_be_visible(
            timeout=self.action_timeout_ms
          )
        except AssertionError as e:
          raise ReferenceUnavailable(
            '"All columns are visible" message did not appear'
          ) from e
        self.page.locator(self.loc.apply_button).first.click()
        self.page.wait_for_timeout(self.settle_ms)
        return revealed
      add_hidden.click()
    raise ReferenceUnavailable(
      f'still hidden columns after revealing {self.max_hidden_columns}'
    )

  def read_table(self) -> ReferenceDataset:
    """Read the table under the page header.

    An empty or unreadable table gets a page reload and a fresh column reveal
    before the next attempt.
    """
    header_loc = self.page.locator(self.loc.page_header).first
    header = header_loc.inner_text().strip()
    table = table_under(header_loc)
    rows = retry_until(
      lambda: table_rows(table),
      what=f'read table {header!r}',
      attempts=self.table_attempts,
      interval_s=self.settle_ms / 1000,
      accept=bool,
      on_retry=lambda attempt, err: self._reload_table(),
      sleep=lambda s: self.page.wait_for_timeout(s * 1000),
    )
    return ReferenceDataset(header=header, rows=rows)

  def _reload_table(self) -> None:
    self.page.reload()
    self.reveal_all_columns()


@contextlib.contextmanager
def open_console(
  tenant_url: str,
  storage_state: str | None = None,
  headless: bool = True,
  locators: ConsoleLocators | None = None,
) -> Iterator[PlaywrightConsole]:
  """Launch Chromium with an authenticated storage state and yield a console."""
  with sync_playwright() as p:
    browser = p.chromium.launch(headless=headless)
    try:
      context = browser.new_context(storage_state=storage_state)
      page = context.new_page()
      yield PlaywrightConsole(page, tenant_url, locators=locators)
    finally:
      browser.close()
