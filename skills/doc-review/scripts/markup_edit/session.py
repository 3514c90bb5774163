"""
Document session: the one mutable holder of a document's text during an
interactive review, with bounded undo/redo.

Snapshots form an append-only log with a cursor. Applying a change after
undo drops the redo branch; once the log exceeds ``max_snapshots`` the
oldest entries are discarded. Aborting a review is simply discarding the
session without writing its text anywhere.
"""

import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from . import decisions
from .annotations import count_annotations, parse
from .common import Annotation

DEFAULT_MAX_SNAPSHOTS = 50


@dataclass
class Snapshot:
    """One entry in the session log"""
    text: str
    description: str
    timestamp: float


class DocumentSession:
    """Undo-capable wrapper around one document's evolving text.

    Annotations are never stored here; they are re-parsed from ``text``
    whenever a caller needs them.
    """

    def __init__(self, initial_text: str, max_snapshots: int = DEFAULT_MAX_SNAPSHOTS):
        if max_snapshots < 1:
            raise ValueError(f"max_snapshots must be at least 1, got {max_snapshots}")
        self.max_snapshots = max_snapshots
        self._initial_text = initial_text
        self._log: List[Snapshot] = []
        self._cursor = -1
        self._push(initial_text, 'Initial state')

    # ------------------------------------------------------------
    # Log primitives
    # ------------------------------------------------------------

    def _push(self, text: str, description: str):
        del self._log[self._cursor + 1:]
        self._log.append(Snapshot(text, description, time.time()))
        overflow = len(self._log) - self.max_snapshots
        if overflow > 0:
            del self._log[:overflow]
        self._cursor = len(self._log) - 1

    @property
    def current(self) -> Optional[Snapshot]:
        if 0 <= self._cursor < len(self._log):
            return self._log[self._cursor]
        return None

    @property
    def text(self) -> str:
        snapshot = self.current
        return snapshot.text if snapshot is not None else self._initial_text

    @property
    def annotations(self) -> List[Annotation]:
        """Annotations of the current text (parsed on demand)."""
        return parse(self.text)

    def apply(self, new_text: str, description: str = '') -> str:
        """Record ``new_text`` as the current state and return it."""
        self._push(new_text, description)
        return new_text

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._log) - 1

    def undo(self) -> Optional[Snapshot]:
        """Step back one snapshot. Returns the now-current snapshot, or None at the start."""
        if not self.can_undo():
            return None
        self._cursor -= 1
        return self._log[self._cursor]

    def redo(self) -> Optional[Snapshot]:
        """Step forward one snapshot. Returns the now-current snapshot, or None at the end."""
        if not self.can_redo():
            return None
        self._cursor += 1
        return self._log[self._cursor]

    def info(self) -> Dict[str, int]:
        return {
            'position': self._cursor,
            'size': len(self._log),
            'undo_steps': max(self._cursor, 0),
            'redo_steps': len(self._log) - self._cursor - 1,
        }

    def history(self, limit: int = 10) -> List[Dict]:
        """
        A window of the log centred on the cursor.

        Returns:
            [{'index': int, 'description': str, 'current': bool}, ...]
        """
        start = max(0, self._cursor - limit // 2)
        end = min(len(self._log), start + limit)
        return [
            {'index': idx, 'description': self._log[idx].description, 'current': idx == self._cursor}
            for idx in range(start, end)
        ]

    def clear(self):
        """Drop every snapshot; ``text`` falls back to the initial text."""
        self._log.clear()
        self._cursor = -1

    # ------------------------------------------------------------
    # Review operations
    # ------------------------------------------------------------

    def apply_decision(self, change: Annotation, accept: bool) -> str:
        new_text = decisions.apply_decision(self.text, change, accept)
        verb = 'Accept' if accept else 'Reject'
        return self.apply(new_text, f"{verb} {change.kind} at line {change.line}")

    def set_status(self, comment: Annotation, resolved: bool) -> str:
        new_text = decisions.set_status(self.text, comment, resolved)
        verb = 'Resolve' if resolved else 'Reopen'
        return self.apply(new_text, f"{verb} comment by {comment.display_author} at line {comment.line}")

    def add_reply(self, comment: Annotation, author: str, message: str) -> str:
        new_text = decisions.add_reply(self.text, comment, author, message)
        return self.apply(new_text, f"Reply by {author} to {comment.display_author}")

    def counts(self) -> Dict[str, int]:
        return count_annotations(self.text)
