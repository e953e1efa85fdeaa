"""Question bank loading.

The bank is a JSON object keyed by question key. Values are either the
question text or an object with `question` and optional `instructions`.
"""

import json
from collections.abc import Iterator

from .data import Question, QuestionKey


class QuestionBank:
  """Ordered mapping of question keys to canned questions."""

  def __init__(self, questions: dict[QuestionKey, Question]) -> None:
    self._questions = dict(questions)

  def __len__(self) -> int:
    return len(self._questions)

  def __iter__(self) -> Iterator[Question]:
    return iter(self._questions.values())

  def __contains__(self, key: object) -> bool:
    return key in self._questions

  def keys(self) -> list[QuestionKey]:
    return list(self._questions)

  def get(self, key: QuestionKey) -> Question:
    try:
      return self._questions[key]
    except KeyError:
      raise KeyError(f'Unknown question key: {key}') from None

  @classmethod
  def from_dict(cls, raw: dict) -> 'QuestionBank':
    questions: dict[QuestionKey, Question] = {}
    for key, value in raw.items():
      if isinstance(value, str):
        questions[key] = Question(key=key, question=value)
      elif isinstance(value, dict) and value.get('question'):
        questions[key] = Question(
          key=key,
          question=value['question'],
          instructions=value.get('instructions', ''),
        )
      else:
        raise ValueError(f'Question {key!r} has no question text')
    return cls(questions)


def load_question_bank(path: str) -> QuestionBank:
  """Load a question bank from a JSON file."""
  with open(path, 'r', encoding='utf-8') as f:
    raw = json.load(f)
  if not isinstance(raw, dict):
    raise ValueError(f'{path}: expected a JSON object of questions')
  return QuestionBank.from_dict(raw)
