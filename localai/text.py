"""Spacing fix-ups for streamed model output.

Some servers stream tokens with their separating whitespace stripped and
with log timestamps mixed in.  :func:`normalize` runs on each fragment
before it is appended to the response buffer, so the cost stays
proportional to the new data.
"""

from __future__ import annotations

import re

_TIMESTAMP = re.compile(r"\d{2}:\d{2}:\d{2}")
_LOWER_UPPER = re.compile(r"(?<=[a-z])(?=[A-Z])")
_DIGIT_LETTER = re.compile(r"(?<=\d)(?=[a-zA-Z])")
_LETTER_UPPER = re.compile(r"(?<=[a-zA-Z])(?=[A-Z])")
_PUNCT_LETTER = re.compile(r"([,.!?])(?=[A-Za-z])")


def normalize(fragment: str) -> str:
    """Return *fragment* with timestamps removed and word boundaries spaced.

    >>> normalize("helloWorld")
    'hello World'
    >>> normalize("12:30:45 done")
    ' done'
    """
    text = _TIMESTAMP.sub("", fragment)
    text = _LOWER_UPPER.sub(" ", text)
    text = _DIGIT_LETTER.sub(" ", text)
    # Catches boundaries the first pass cannot see, e.g. "ABc" style runs.
    text = _LETTER_UPPER.sub(" ", text)
    return _PUNCT_LETTER.sub(r"\1 ", text)
