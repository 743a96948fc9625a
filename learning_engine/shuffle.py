"""Seeded, cross-platform reproducible shuffling.

The construction is fixed so that any implementation given the same seed
string produces the same orderings:

1. The initial 32-bit state is the first four bytes (big-endian) of
   SHA-256 over the UTF-8 encoded seed.
2. Values are drawn from a Mulberry32 generator (32-bit unsigned arithmetic).
3. Lists are shuffled with Fisher-Yates from the last index down to 1, where
   the swap index for position ``i`` is ``(value * (i + 1)) >> 32``.
"""

import hashlib
from typing import List, Sequence, TypeVar

T = TypeVar("T")

MASK_32 = 0xFFFFFFFF
MULBERRY_INCREMENT = 0x6D2B79F5


def seed_to_state(seed: str) -> int:
    """Derive the 32-bit generator state from a seed string."""
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big")


def _imul(a: int, b: int) -> int:
    return (a * b) & MASK_32


class SeededRandom:
    """Mulberry32 stream bound to one seed.

    Each session gets its own instance; nothing is shared between callers.
    """

    def __init__(self, seed: str):
        self.seed = seed
        self._state = seed_to_state(seed)

    def next_uint32(self) -> int:
        self._state = (self._state + MULBERRY_INCREMENT) & MASK_32
        t = self._state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & MASK_32
        return (t ^ (t >> 14)) & MASK_32

    def below(self, bound: int) -> int:
        """Return an integer in ``[0, bound)``."""
        if bound <= 0:
            raise ValueError("bound must be positive")
        return (self.next_uint32() * bound) >> 32

    def shuffled(self, items: Sequence[T]) -> List[T]:
        """Return a Fisher-Yates shuffled copy of ``items``."""
        result = list(items)
        for i in range(len(result) - 1, 0, -1):
            j = self.below(i + 1)
            result[i], result[j] = result[j], result[i]
        return result
