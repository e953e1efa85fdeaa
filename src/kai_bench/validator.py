"""Answer validators.

Includes an OpenRouter-backed judge and a local static stub.
"""

import json
import re
import time
import random
from dataclasses import dataclass
from typing import Any

import requests

from .config import load_config
from .data import Question, ReferenceDataset, Verdict
from .errors import ValidatorError

SYSTEM_PROMPT = (
  'You grade answers given by an AI assistant embedded in a device '
  'visibility console. You receive the user question, the assistant answer, '
  'and the table the console shows for that question. Decide whether the '
  'answer is consistent with the table. Reply with a single JSON object: '
  '{"isAccurate": true|false, "reason": "<one or two sentences>"}.'
)

USER_TEMPLATE = """QUESTION:
{question}
{instructions}
ASSISTANT ANSWER:
{answer}

TABLE "{header}" ({n_rows} rows{truncated}):
{rows}
"""

_JSON_OBJECT = re.compile(r'\{.*\}', re.S)


@dataclass
class RetryConfig:
  """Retry/backoff configuration."""

  max_retries: int = 4
  backoff_base: float = 0.8  # exponential base
  backoff_cap: float = 8.0  # seconds max per sleep


def _should_retry(status: int | None) -> bool:
  """Return True if HTTP status suggests a transient failure."""
  if status is None:
    return True
  return status in (408, 409, 425, 429, 500, 502, 503, 504)


def parse_verdict(text: str) -> Verdict:
  """Extract a Verdict from the judge's reply.

  Accepts bare JSON or JSON wrapped in prose / code fences.
  """
  m = _JSON_OBJECT.search(text)
  if not m:
    raise ValidatorError(f'no JSON object in validator reply: {text[:200]!r}')
  try:
    obj = json.loads(m.group(0))
  except json.JSONDecodeError as e:
    raise ValidatorError(f'invalid JSON in validator reply: {e}') from e
  acc = obj.get('isAccurate', obj.get('is_accurate'))
  if isinstance(acc, str):
    acc = acc.strip().lower() == 'true'
  if not isinstance(acc, bool):
    raise ValidatorError(f'validator reply lacks isAccurate: {obj!r}')
  return Verdict(is_accurate=acc, reason=str(obj.get('reason', '')).strip())


class AnswerValidator:
  """Abstract judge comparing an answer to reference data.

  `timeout_s`, when given, is the time left for the whole judgement; a
  validator must not block past it.
  """

  def validate(
    self,
    question: Question,
    answer: str,
    reference: ReferenceDataset,
    timeout_s: float | None = None,
  ) -> Verdict:
    raise NotImplementedError


class OpenRouterValidator(AnswerValidator):
  """OpenRouter-compatible chat completions judge."""

  def __init__(
    self,
    api_key: str | None = None,
    base_url: str | None = None,
    model: str | None = None,
    max_rows: int = 200,
    retry: RetryConfig | None = None,
    request_timeout_s: float = 60.0,
  ) -> None:
    """Create a validator.

    Args:
      api_key: API key to authenticate with OpenRouter. If omitted, read
        from the environment via `load_config()`.
      base_url: Override the API base URL.
      model: Judge model identifier (falls back to config default).
      max_rows: Cap on table rows sent to the judge.
      request_timeout_s: Upper bound for a single HTTP request.
    """
    cfg = load_config()
    self.api_key = api_key or cfg.openrouter_api_key
    self.base_url = base_url or cfg.openrouter_base_url
    self.model = model or cfg.validator_model
    self.site_url = cfg.openrouter_site_url
    self.site_title = cfg.openrouter_site_title
    self.max_rows = max_rows
    self.retry = retry or RetryConfig()
    self.request_timeout_s = request_timeout_s
    if not self.api_key:
      raise RuntimeError(
        'OPENROUTER_API_KEY missing; set it in environment or .env'
      )

  def build_prompt(
    self, question: Question, answer: str, reference: ReferenceDataset
  ) -> str:
    rows = reference.rows[: self.max_rows]
    truncated = len(reference.rows) > self.max_rows
    instructions = (
      f'\nGRADING NOTES:\n{question.instructions}\n'
      if question.instructions
      else ''
    )
    return USER_TEMPLATE.format(
      question=question.question,
      instructions=instructions,
      answer=answer,
      header=reference.header,
      n_rows=len(reference.rows),
      truncated=f', first {self.max_rows} shown' if truncated else '',
      rows=json.dumps(rows, ensure_ascii=False, indent=1),
    )

  def _post(
    self, payload: dict[str, Any], timeout_s: float | None = None
  ) -> dict[str, Any]:
    """POST with retry. Never waits past `timeout_s` in total, if given."""
    deadline = time.monotonic() + timeout_s if timeout_s is not None else None
    headers = {
      'Authorization': f'Bearer {self.api_key}',
      'Content-Type': 'application/json',
    }
    # Optional OpenRouter ranking headers
    if self.site_url:
      headers['HTTP-Referer'] = self.site_url
    if self.site_title:
      headers['X-Title'] = self.site_title

    for attempt in range(1, self.retry.max_retries + 2):
      status = None
      request_timeout = self.request_timeout_s
      if deadline is not None:
        left = deadline - time.monotonic()
        if left <= 0:
          raise ValidatorError('validator time budget exhausted')
        request_timeout = min(request_timeout, left)
      try:
        resp = requests.post(
          self.base_url, headers=headers, json=payload, timeout=request_timeout
        )
        status = resp.status_code
        resp.raise_for_status()
        return resp.json()
      except Exception:
        if attempt <= self.retry.max_retries and _should_retry(status):
          sleep = min(
            self.retry.backoff_cap,
            (self.retry.backoff_base**attempt) + random.random() * 0.25,
          )
          if deadline is not None and time.monotonic() + sleep >= deadline:
            raise  # no budget left for another attempt
          time.sleep(sleep)
          continue
        raise  # exhausted
    raise AssertionError('unreachable')

  def validate(
    self,
    question: Question,
    answer: str,
    reference: ReferenceDataset,
    timeout_s: float | None = None,
  ) -> Verdict:
    payload = {
      'model': self.model,
      'messages': [
        {'role': 'system', 'content': SYSTEM_PROMPT},
        {
          'role': 'user',
          'content': self.build_prompt(question, answer, reference),
        },
      ],
      'temperature': 0.0,
    }
    data = self._post(payload, timeout_s=timeout_s)
    try:
      text = data['choices'][0]['message']['content'].strip()
    except (KeyError, IndexError, TypeError, AttributeError) as e:
      raise ValidatorError(f'unexpected validator payload: {data!r}') from e
    return parse_verdict(text)


class StaticValidator(AnswerValidator):
  """Offline stub for dry runs.

  With `verdict` set, always returns it. Otherwise the answer counts as
  accurate when it mentions at least one cell of the first reference row.
  """

  def __init__(self, verdict: Verdict | None = None) -> None:
    self.verdict = verdict
    self.calls: list[tuple[str, str, ReferenceDataset]] = []
    self.timeouts: list[float | None] = []

  def validate(
    self,
    question: Question,
    answer: str,
    reference: ReferenceDataset,
    timeout_s: float | None = None,
  ) -> Verdict:
    self.calls.append((question.key, answer, reference))
    self.timeouts.append(timeout_s)
    if self.verdict is not None:
      return self.verdict
    if not reference.rows:
      return Verdict(False, 'reference table is empty')
    cells = [v for v in reference.rows[0].values() if v and v.strip()]
    hit = next((c for c in cells if c in answer), None)
    if hit:
      return Verdict(True, f'answer mentions {hit!r} from the first row')
    return Verdict(False, 'answer mentions nothing from the first row')


def validator_from_name(name: str, model: str | None = None) -> AnswerValidator:
  """Instantiate validator by name."""
  if name == 'openrouter':
    return OpenRouterValidator(model=model)
  if name == 'static':
    return StaticValidator()
  raise ValueError(f'Unknown validator: {name}')
