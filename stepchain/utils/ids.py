from __future__ import annotations

import itertools
import random
from typing import Callable, Optional

IdGenerator = Callable[[], str]


def random_id_generator(seed: Optional[int] = None) -> IdGenerator:
    """Return a generator of 16 digit upper-case hex ids.

    Each generator owns its random source, so seeding one (in tests) never
    affects ids produced elsewhere.
    """
    rng = random.Random(seed)

    def _next_id() -> str:
        return f"{rng.getrandbits(63):016X}"

    return _next_id


def sequential_id_generator(prefix: str = "", start: int = 1) -> IdGenerator:
    """Return a monotonic generator, e.g. ``0000000000000001``."""
    counter = itertools.count(start)

    def _next_id() -> str:
        return f"{prefix}{next(counter):016X}"

    return _next_id
