"""
Seeded random source shared by every generation component.

The generator is a 48-bit linear congruential generator with the constants of
libc's srand48()/lrand48(). Programs are a deterministic function of the seed
AND of the order in which decisions are drawn, so every probabilistic choice
in the engine goes through one of the four primitives below:

- next(): one raw 31-bit value,
- upto(n): a bounded draw,
- flipcoin(p): a percentage coin flip,
- upto_with_filter(n, reject): a bounded draw redrawn until accepted.

Draws made along a branch that is later rolled back are never given back.
"""

from __future__ import annotations

from typing import Callable

from cfuzz.error import RandomRetryLimitError

LCG_MULTIPLIER = 0x5DEECE66D
LCG_INCREMENT = 0xB
LCG_MASK = (1 << 48) - 1
MAX_REJECT_RETRIES = 1 << 16


class RandomSource:
    """lrand48-compatible random source with optional decision tracing."""

    def __init__(self, seed: int = 0, trace: bool = False, trace_raw: bool = False):
        self.state = 0
        self.draw_count = 0
        self.trace = trace
        self.trace_raw = trace_raw
        self.trace_lines: list[str] = []
        self.seed(seed)

    def seed(self, seed: int) -> None:
        """Reset the state the way srand48() does."""
        self.seed_value = seed
        self.state = ((seed << 16) + 0x330E) & LCG_MASK
        self.draw_count = 0
        self.trace_lines = []

    def next(self) -> int:
        self.state = (LCG_MULTIPLIER * self.state + LCG_INCREMENT) & LCG_MASK
        self.draw_count += 1
        return self.state >> 17

    def upto(self, n: int) -> int:
        """Return a value in [0, n); 0 without drawing when n is 0."""
        if n <= 0:
            return 0
        raw = self.next()
        value = raw % n
        self._trace_upto(n, value, 0, raw)
        return value

    def upto_with_filter(self, n: int, reject: Callable[[int], bool] | None) -> int:
        """Draw in [0, n) until ``reject`` accepts the value.

        Each redraw consumes one raw value. After MAX_REJECT_RETRIES redraws
        the configuration is considered unusable and RandomRetryLimitError
        is raised.
        """
        if n <= 0:
            return 0
        raw = self.next()
        value = raw % n
        tries = 0
        if reject is not None:
            while reject(value) and tries < MAX_REJECT_RETRIES:
                raw = self.next()
                value = raw % n
                tries += 1
            if reject(value):
                raise RandomRetryLimitError(
                    "filtered draw exceeded its retry limit (n=%d, tries=%d)" % (n, tries)
                )
        self._trace_upto(n, value, tries, raw)
        return value

    def flipcoin(self, probability: int) -> bool:
        """Return True with ``probability`` percent chance (clamped to 0..100)."""
        probability = max(0, min(probability, 100))
        raw = self.next()
        result = (raw % 100) < probability
        if self.trace:
            line = "%d F %d -> %d" % (len(self.trace_lines) + 1, probability, int(result))
            if self.trace_raw:
                line += " raw=%d" % raw
            self.trace_lines.append(line)
        return result

    def _trace_upto(self, n: int, value: int, tries: int, raw: int) -> None:
        if not self.trace:
            return
        line = "%d U %d -> %d" % (len(self.trace_lines) + 1, n, value)
        if self.trace_raw:
            line += " tries=%d raw=%d" % (tries, raw)
        self.trace_lines.append(line)

    def write_trace(self, filename: str) -> None:
        """Write the recorded decisions, one per line, after a seed comment."""
        with open(filename, "w") as trace_file:
            trace_file.write("# seed=%d\n" % self.seed_value)
            for line in self.trace_lines:
                trace_file.write(line + "\n")
