# bulkdispatch/core/number_generator.py
"""
Random recipient generator for the "random" input source.

Produces syntactically plausible numbers ``+<region><prefix><suffix>``.
No I/O; the random source is injectable so tests can seed it.
"""
from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from typing import Sequence

DEFAULT_REGION_CODE = "258"
DEFAULT_PREFIXES = ("84", "82", "85", "86", "87")


@dataclass(frozen=True)
class NumberGenerator:
    region_code: str = DEFAULT_REGION_CODE
    prefixes: Sequence[str] = DEFAULT_PREFIXES
    suffix_width: int = 7
    suffix_min: int = 1000000
    suffix_max: int = 9999999
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self):
        if not self.prefixes:
            raise ValueError("At least one prefix is required")
        if self.suffix_min > self.suffix_max:
            raise ValueError("suffix_min must not exceed suffix_max")
        if len(str(self.suffix_max)) > self.suffix_width:
            raise ValueError(
                f"suffix_max={self.suffix_max} does not fit in {self.suffix_width} digits"
            )

    @property
    def capacity(self) -> int:
        """Number of distinct identifiers this generator can produce."""
        return len(set(self.prefixes)) * (self.suffix_max - self.suffix_min + 1)

    def generate(self, count: int) -> set[str]:
        """
        Return exactly ``count`` distinct identifiers.

        Collisions are discarded and redrawn until the target is met.

        Raises:
            ValueError: count is not positive or exceeds the generator capacity
        """
        if count <= 0:
            raise ValueError(f"count must be positive, got {count}")
        if count > self.capacity:
            raise ValueError(f"count={count} exceeds generator capacity={self.capacity}")

        numbers: set[str] = set()
        while len(numbers) < count:
            prefix = self.rng.choice(self.prefixes)
            suffix = str(self.rng.randint(self.suffix_min, self.suffix_max)).zfill(self.suffix_width)
            numbers.add(f"+{self.region_code}{prefix}{suffix}")
        return numbers

    def pattern(self) -> re.Pattern[str]:
        """Regex matching every identifier this generator can produce."""
        prefixes = "|".join(re.escape(p) for p in self.prefixes)
        return re.compile(
            rf"^\+{re.escape(self.region_code)}(?:{prefixes})\d{{{self.suffix_width}}}$"
        )


def generator_from_settings() -> NumberGenerator:
    from bulkdispatch.config import settings

    return NumberGenerator(
        region_code=settings.generator_region_code,
        prefixes=tuple(settings.generator_prefixes),
        suffix_width=settings.generator_suffix_width,
        suffix_min=settings.generator_suffix_min,
        suffix_max=settings.generator_suffix_max,
    )
