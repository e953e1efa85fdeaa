"""kai-bench command-line interface.

Supports running the Kai benchmark against a live tenant and rendering
reports from the accumulated results CSV.
"""

import argparse
import datetime
import json
import os
import sys

from .config import BenchConfig, load_config
from .console import ConsoleLocators, open_console
from .harness import BenchmarkRunner, RunLogger
from .questions import load_question_bank
from .recorder import ResultRecorder
from .report import render_report
from .timer import ResponseTimer
from .validator import validator_from_name


def _timestamp() -> str:
  return datetime.datetime.now().strftime('%Y%m%d_%H%M%S')


def _load_locators(path: str | None) -> ConsoleLocators | None:
  """Read selector overrides from a JSON file, if given."""
  if not path:
    return None
  with open(path, 'r', encoding='utf-8') as f:
    return ConsoleLocators.from_dict(json.load(f))


def cmd_run(args: argparse.Namespace) -> None:
  """CLI: ask every question, append results to the CSV, print the summary."""
  cfg = load_config()
  tenant_url = args.tenant_url or cfg.tenant_url
  if not tenant_url:
    sys.exit('TENANT_URL missing; set it in environment, .env or --tenant-url')
  bank = load_question_bank(args.questions or cfg.question_bank)
  keys = args.keys or bank.keys()
  out = args.out or cfg.results_file

  bench = BenchConfig(
    tenant_url=tenant_url,
    output_path=out,
    question_keys=list(keys),
    response_timeout_s=args.response_timeout,
    question_timeout_s=args.question_timeout,
    run_timeout_s=args.run_timeout,
    verbose=not args.quiet,
  )
  validator = validator_from_name(args.validator, model=args.model)
  log_path = os.path.join(os.path.dirname(os.path.abspath(out)), 'run.log')
  headless = cfg.headless and not args.headed

  with open_console(
    tenant_url,
    storage_state=args.storage_state or cfg.storage_state,
    headless=headless,
    locators=_load_locators(args.locators),
  ) as console:
    runner = BenchmarkRunner(
      bench,
      bank,
      navigator=console,
      chat=console,
      tables=console,
      validator=validator,
      recorder=ResultRecorder(out),
      timer=ResponseTimer(max_wait_s=args.response_timeout),
      logger=RunLogger(log_path, enabled=bench.verbose),
    )
    runner.run()
  print(f'Appended results to {out}')


def cmd_report(args: argparse.Namespace) -> None:
  """CLI: aggregate the results CSV into metrics, chart and Markdown."""
  out = args.out or os.path.dirname(os.path.abspath(args.infile))
  basename = f'kai-{_timestamp()}'
  metrics = render_report(args.infile, out, basename=basename)
  avg = (
    'n/a' if metrics.average_time_s is None else f'{metrics.average_time_s:.2f}s'
  )
  print(
    f'{metrics.rows} answers, accuracy {metrics.accuracy_pct:.2f}%, avg {avg}'
  )
  print(f'Wrote report to {out}')


def main() -> None:
  """Entry point for kai-bench CLI."""
  ap = argparse.ArgumentParser(
    prog='kai-bench', description='Kai assistant accuracy and latency benchmark'
  )
  sub = ap.add_subparsers(dest='cmd', required=True)

  r = sub.add_parser('run', help='Ask the question set and record results')
  r.add_argument(
    '--keys', nargs='+', default=None, help='Question keys (default: all)'
  )
  r.add_argument(
    '--questions', type=str, default=None, help='Question bank JSON path'
  )
  r.add_argument(
    '--out', type=str, default=None, help='Results CSV (appended to)'
  )
  r.add_argument('--tenant-url', type=str, default=None, help='Console URL')
  r.add_argument(
    '--storage-state',
    type=str,
    default=None,
    help='Playwright storage state with an authenticated session',
  )
  r.add_argument(
    '--locators', type=str, default=None, help='JSON file of selector overrides'
  )
  r.add_argument(
    '--validator',
    type=str,
    choices=['openrouter', 'static'],
    default='openrouter',
    help='Answer validator to use',
  )
  r.add_argument('--model', type=str, default=None, help='Validator model')
  r.add_argument(
    '--response-timeout',
    type=float,
    default=180.0,
    help='Max seconds to wait for Kai to finish answering',
  )
  r.add_argument(
    '--question-timeout',
    type=float,
    default=300.0,
    help='Max seconds for one question end to end',
  )
  r.add_argument(
    '--run-timeout',
    type=float,
    default=1200.0,
    help='Time budget for the whole run',
  )
  r.add_argument('--headed', action='store_true', help='Show the browser')
  r.add_argument(
    '--quiet', action='store_true', help='Disable per-question stdout logs'
  )
  r.set_defaults(func=cmd_run)

  rp = sub.add_parser('report', help='Aggregate metrics & render report')
  rp.add_argument(
    '--in', dest='infile', type=str, required=True, help='Results CSV path'
  )
  rp.add_argument(
    '--out',
    type=str,
    default=None,
    help='Output directory (defaults to the CSV directory)',
  )
  rp.set_defaults(func=cmd_report)

  args = ap.parse_args()
  args.func(args)


if __name__ == '__main__':
  main()
