"""Reporting over the accumulated results CSV.

Builds metrics, plots per-question response times, and writes a Markdown
report. The CSV holds every run appended so far.
"""

import json
import os
from dataclasses import dataclass, asdict

import pandas as pd
import matplotlib.pyplot as plt

from .recorder import read_records


@dataclass
class Metrics:
  """Aggregated metrics over the results file."""

  rows: int
  correct: int
  accuracy_pct: float
  average_time_s: float | None
  by_question: dict[str, dict[str, float | None]]


def load_results(path: str) -> pd.DataFrame:
  """Load the results CSV with typed accuracy and response time columns.

  Blank ResponseTime cells (questions never timed) become NaN in `seconds`
  and drop out of every mean.
  """
  df = read_records(path)
  df['correct'] = df['IsAccurate'] == 'True'
  df['seconds'] = pd.to_numeric(df['ResponseTime'], errors='coerce')
  return df


def _seconds(value: float) -> float | None:
  return float(value) if pd.notna(value) else None


def aggregate(df: pd.DataFrame) -> Metrics:
  """Compute overall and per-question accuracy and mean response time."""
  rows = len(df)
  correct = int(df['correct'].sum()) if rows else 0
  grouped = df.groupby('Question', sort=False).agg(
    asked=('correct', 'size'),
    accuracy=('correct', 'mean'),
    mean_seconds=('seconds', 'mean'),
  )
  by_question = {
    q: {
      'asked': int(r.asked),
      'accuracy_pct': float(r.accuracy) * 100,
      'mean_seconds': _seconds(r.mean_seconds),
    }
    for q, r in grouped.iterrows()
  }
  return Metrics(
    rows=rows,
    correct=correct,
    accuracy_pct=(correct / rows * 100) if rows else 0.0,
    average_time_s=_seconds(df['seconds'].mean()) if rows else None,
    by_question=by_question,
  )


def _clip(text: str, width: int = 60) -> str:
  return text if len(text) <= width else text[: width - 1] + '…'


def render_report(csv_path: str, out_dir: str, basename: str = 'report') -> Metrics:
  """Aggregate the results file and write metrics + chart + Markdown report.

  Files written:
    metrics_{basename}.json
    response_times_{basename}.png
    report_{basename}.md
  """
  df = load_results(csv_path)
  metrics = aggregate(df)
  os.makedirs(out_dir, exist_ok=True)
  with open(os.path.join(out_dir, f'metrics_{basename}.json'), 'w') as f:
    json.dump(asdict(metrics), f, indent=2)

  per_q = pd.DataFrame(
    [
      {
        'question': _clip(q),
        'asked': v['asked'],
        'accuracy_pct': v['accuracy_pct'],
        'mean_seconds': v['mean_seconds'],
      }
      for q, v in metrics.by_question.items()
    ],
    columns=['question', 'asked', 'accuracy_pct', 'mean_seconds'],
  )
  per_q['mean_seconds'] = per_q['mean_seconds'].astype(float)

  chart_path = os.path.join(out_dir, f'response_times_{basename}.png')
  fig, ax = plt.subplots(figsize=(8, max(3, 0.35 * len(per_q))))
  ax.barh(per_q['question'], per_q['mean_seconds'])
  ax.invert_yaxis()
  ax.set_xlabel('Mean response time (s)')
  ax.set_title('Kai response time by question')
  fig.tight_layout()
  fig.savefig(chart_path, dpi=160)
  plt.close(fig)

  lines = []
  lines.append('# Kai Benchmark Report\n')
  lines.append(f'**Source:** `{csv_path}`  ')
  lines.append(f'**Answers recorded:** {metrics.rows}  ')
  lines.append(f'**Kai Accuracy:** {metrics.accuracy_pct:.2f}%  ')
  avg = (
    'n/a' if metrics.average_time_s is None else f'{metrics.average_time_s:.2f}s'
  )
  lines.append(f'**Average Response Time:** {avg}\n')
  lines.append('## By Question\n')
  lines.append(per_q.to_markdown(index=False, floatfmt='.2f'))
  lines.append(f'\n![Response times](response_times_{basename}.png)\n')
  wrong = df.loc[~df['correct'], ['Question', 'AI Comment']]
  if len(wrong):
    lines.append('## Inaccurate Answers\n')
    lines.append(wrong.to_markdown(index=False))
  with open(
    os.path.join(out_dir, f'report_{basename}.md'), 'w', encoding='utf-8'
  ) as f:
    f.write('\n'.join(lines) + '\n')
  return metrics
