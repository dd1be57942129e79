"""
Shell command history persisted across sessions.
"""

from pathlib import Path
from typing import List, Union

import structlog

logger = structlog.get_logger()


class CommandHistory:
    """
    Loads prior history on startup and appends this session's lines on exit.

    Lines are never deduplicated so that a history file can be replayed as
    a script later.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self.previous: List[str] = []
        self.lines: List[str] = []

    def load(self) -> List[str]:
        """
        Read prior history.

        Returns:
            Non-blank lines, most recent first
        """
        if not self.path.exists():
            self.previous = []
            return self.previous

        text = self.path.read_text(encoding="utf-8")
        self.previous = [line for line in reversed(text.split("\n")) if line.strip()]
        return self.previous

    def record(self, line: str) -> None:
        self.lines.append(line)

    def save(self) -> None:
        """Append this session's lines to the history file."""
        if not self.lines:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write("\n" + "\n".join(self.lines))

        logger.debug("history_saved", path=str(self.path), lines=len(self.lines))
        self.lines = []


__all__ = ["CommandHistory"]
