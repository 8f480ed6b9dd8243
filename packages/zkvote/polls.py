import json
import logging
import os
from typing import Optional

from .config import DEFAULT_MIN_AGE, POLLS_PATH
from .models import PollConfiguration

logger = logging.getLogger(__name__)

# Used when no poll file is configured: the demo ballot with two candidates.
DEFAULT_POLLS = {
    1: PollConfiguration(poll_id=1, candidates=frozenset({0, 1}), min_age=DEFAULT_MIN_AGE, title="Demo poll"),
}


def parse_polls(data: dict) -> dict[int, PollConfiguration]:
    """Build poll configurations from ``{"<id>": {"candidates": [...], "minAge": n}}``."""
    polls = {}
    for key, entry in data.items():
        poll_id = int(key)
        candidates = entry.get("candidates")
        if not candidates:
            raise ValueError(f"poll {poll_id} has no candidates")
        polls[poll_id] = PollConfiguration(
            poll_id=poll_id,
            candidates=frozenset(int(c) for c in candidates),
            min_age=int(entry.get("minAge", DEFAULT_MIN_AGE)),
            open=bool(entry.get("open", True)),
            title=entry.get("title", ""),
        )
    return polls


class PollBook:
    """Read-only view over the externally supplied poll configurations."""

    def __init__(self, polls: dict[int, PollConfiguration]):
        self._polls = dict(polls)

    @classmethod
    def from_file(cls, path: str = POLLS_PATH) -> "PollBook":
        if path and os.path.exists(path):
            with open(path) as f:
                return cls(parse_polls(json.load(f)))
        if path:
            logger.warning("Poll configuration not found at %s. Using the default poll.", path)
        return cls(DEFAULT_POLLS)

    def get(self, poll_id: int) -> Optional[PollConfiguration]:
        return self._polls.get(poll_id)

    def all(self) -> list[PollConfiguration]:
        return [self._polls[k] for k in sorted(self._polls)]
