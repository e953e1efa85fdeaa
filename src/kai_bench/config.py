"""Configuration loader for kai-bench.

Reads environment variables (optionally from .env) and exposes a typed config.
Only the CLI reads the environment; the runner gets an explicit BenchConfig.
"""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

from .data import QuestionKey

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
  v = os.getenv(name)
  if v is None:
    return default
  return v.strip().lower() in {'1', 'true', 'yes', 'on'}


@dataclass(frozen=True)
class Config:
  """Holds runtime configuration loaded from environment."""

  tenant_url: str | None
  results_file: str
  question_bank: str
  storage_state: str | None
  headless: bool
  openrouter_api_key: str | None
  openrouter_base_url: str
  validator_model: str
  openrouter_site_url: str | None
  openrouter_site_title: str | None


def load_config() -> Config:
  """Load configuration from environment variables."""
  return Config(
    tenant_url=os.getenv('TENANT_URL') or os.getenv('tenantURL'),
    results_file=os.getenv('KAI_RESULTS_FILE', 'Kai_Test_Results.csv'),
    question_bank=os.getenv('KAI_QUESTION_BANK', 'questions.json'),
    storage_state=os.getenv('KAI_STORAGE_STATE'),
    headless=_env_bool('KAI_HEADLESS', True),
    openrouter_api_key=os.getenv('OPENROUTER_API_KEY'),
    openrouter_base_url=os.getenv(
      'OPENROUTER_BASE_URL', 'https://openrouter.ai/api/v1/chat/completions'
    ),
    validator_model=os.getenv('VALIDATOR_MODEL', 'openai/gpt-4o-mini'),
    openrouter_site_url=os.getenv('OPENROUTER_HTTP_REFERER'),
    openrouter_site_title=os.getenv('OPENROUTER_X_TITLE'),
  )


@dataclass
class BenchConfig:
  """Everything one benchmark run needs, passed in explicitly."""

  tenant_url: str
  output_path: str
  question_keys: list[QuestionKey] = field(default_factory=list)
  response_timeout_s: float = 180.0
  question_timeout_s: float = 300.0
  run_timeout_s: float = 1200.0
  verbose: bool = True
