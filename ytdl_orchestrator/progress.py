"""Extracts download progress from raw yt-dlp output."""
import re
from typing import List, Optional

_PERCENT_RE = re.compile(r'(\d+(?:\.\d+)?)%')
_SEGMENT_END_RE = re.compile(r'[\r\n]')


def extract_percent(text: str) -> Optional[float]:
    """
    Returns the last percentage found in `text`, or None.

    Buffered output can hold several progress lines, so the most recent one wins.
    """
    matches = _PERCENT_RE.findall(text)
    if not matches:
        return None
    return float(matches[-1])


class LineBuffer:
    """
    Carries unterminated output between reads of a process stream.

    yt-dlp redraws its progress line with carriage returns, so both '\\r' and
    '\\n' end a segment.
    """

    def __init__(self):
        self._pending = ''

    def feed(self, text: str) -> List[str]:
        """Appends `text` and returns every segment completed by it."""
        data = self._pending + text
        parts = _SEGMENT_END_RE.split(data)
        self._pending = parts.pop()
        return [part for part in parts if part]

    def flush(self) -> str:
        """Returns and clears whatever unterminated text is left."""
        rest, self._pending = self._pending, ''
        return rest

    @property
    def pending(self) -> str:
        return self._pending
