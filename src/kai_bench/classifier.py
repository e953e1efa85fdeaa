"""Response classification for kai-bench.

Literal phrase matching on Kai's prose. Crude, but the phrase sets are the
compatibility contract with earlier result files, so they are kept verbatim.
"""

import enum
from collections.abc import Iterable

REFUSAL_PHRASES = ('Sorry',)

EMPTY_RESULT_PHRASES = (
  'No records were found',
  "I'm sorry, but I couldn't find any records",
  'I was unable to find any',
  'no records',
  'There are no devices',
)


class Category(enum.Enum):
  FAILURE = 'failure'
  EMPTY_RESULT = 'empty_result'
  NEEDS_VERIFICATION = 'needs_verification'


class ResponseClassifier:
  """Categorize a raw assistant response.

  Matching is case-sensitive substring search. The empty-result phrases are
  only consulted once reference extraction has already failed.
  """

  def __init__(
    self,
    refusal_phrases: Iterable[str] = REFUSAL_PHRASES,
    empty_result_phrases: Iterable[str] = EMPTY_RESULT_PHRASES,
  ) -> None:
    self.refusal_phrases = tuple(refusal_phrases)
    self.empty_result_phrases = tuple(empty_result_phrases)

  def classify(self, text: str, extraction_failed: bool = False) -> Category:
    if any(p in text for p in self.refusal_phrases):
      return Category.FAILURE
    if extraction_failed and any(p in text for p in self.empty_result_phrases):
      return Category.EMPTY_RESULT
    return Category.NEEDS_VERIFICATION


_default = ResponseClassifier()


def classify(text: str, extraction_failed: bool = False) -> Category:
  """Classify with the default phrase sets."""
  return _default.classify(text, extraction_failed)
