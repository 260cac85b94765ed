"""
Unit tests for RandomSource

Run with: pytest tests/test_random_source.py -v
"""

import unittest

import pytest

from cfuzz.error import GenerationError, RandomRetryLimitError
from cfuzz.random_source import MAX_REJECT_RETRIES, RandomSource


class TestRawDraws(unittest.TestCase):
    def test_first_value_matches_lrand48(self):
        # srand48(0); lrand48()
        self.assertEqual(RandomSource(0).next(), 366850414)

    def test_seed_resets_the_stream(self):
        rng = RandomSource(42)
        first = [rng.next() for _ in range(5)]
        rng.seed(42)
        self.assertEqual([rng.next() for _ in range(5)], first)
        self.assertEqual(rng.draw_count, 5)

    def test_same_seed_same_stream(self):
        a = RandomSource(1234)
        b = RandomSource(1234)
        self.assertEqual([a.next() for _ in range(20)], [b.next() for _ in range(20)])

    def test_values_fit_in_31_bits(self):
        rng = RandomSource(7)
        for _ in range(1000):
            self.assertLess(rng.next(), 1 << 31)


class TestBoundedDraws:
    def test_upto_zero_does_not_draw(self):
        rng = RandomSource(3)
        assert rng.upto(0) == 0
        assert rng.draw_count == 0

    def test_upto_is_next_modulo(self):
        reference = RandomSource(9)
        rng = RandomSource(9)
        for bound in (1, 2, 7, 100, 65536):
            assert rng.upto(bound) == reference.next() % bound

    def test_upto_bounds(self):
        rng = RandomSource(11)
        for _ in range(500):
            assert 0 <= rng.upto(13) < 13

    def test_flipcoin_extremes(self):
        rng = RandomSource(5)
        assert not any(rng.flipcoin(0) for _ in range(100))
        assert all(rng.flipcoin(100) for _ in range(100))
        assert rng.draw_count == 200

    def test_flipcoin_is_clamped(self):
        rng = RandomSource(5)
        assert rng.flipcoin(150)
        assert not rng.flipcoin(-3)

    def test_flipcoin_uses_modulo_100(self):
        reference = RandomSource(21)
        rng = RandomSource(21)
        for _ in range(50):
            assert rng.flipcoin(37) == (reference.next() % 100 < 37)


class TestFilteredDraws:
    def test_accepted_first_draw_consumes_one_value(self):
        rng = RandomSource(8)
        value = rng.upto_with_filter(100, lambda value: False)
        assert value == RandomSource(8).next() % 100
        assert rng.draw_count == 1

    def test_rejected_values_are_redrawn(self):
        rng = RandomSource(8)
        value = rng.upto_with_filter(10, lambda value: value < 5)
        assert 5 <= value < 10
        assert rng.draw_count >= 1

    def test_zero_bound(self):
        rng = RandomSource(8)
        assert rng.upto_with_filter(0, lambda value: True) == 0
        assert rng.draw_count == 0

    def test_retry_ceiling(self):
        rng = RandomSource(8)
        with pytest.raises(RandomRetryLimitError):
            rng.upto_with_filter(100, lambda value: True)
        assert rng.draw_count == MAX_REJECT_RETRIES + 1

    def test_retry_ceiling_is_a_generation_error(self):
        assert issubclass(RandomRetryLimitError, GenerationError)


class TestTrace:
    def test_trace_lines(self):
        rng = RandomSource(17, trace=True)
        value = rng.upto(10)
        coin = rng.flipcoin(30)
        rng.next()
        assert rng.trace_lines == [
            "1 U 10 -> %d" % value,
            "2 F 30 -> %d" % int(coin),
        ]

    def test_raw_trace_records_redraws(self):
        rng = RandomSource(17, trace=True, trace_raw=True)
        rng.upto_with_filter(4, lambda value: False)
        assert rng.trace_lines[0] == "1 U 4 -> 0 tries=0 raw=2092652556"

    def test_raw_trace_records_raw_values(self):
        rng = RandomSource(17, trace=True, trace_raw=True)
        rng.upto(10)
        rng.flipcoin(80)
        assert rng.trace_lines == [
            "1 U 10 -> 6 tries=0 raw=2092652556",
            "2 F 80 -> 1 raw=1563238973",
        ]

    def test_raw_trace_keeps_last_redraw(self):
        rng = RandomSource(17, trace=True, trace_raw=True)
        rng.upto_with_filter(100, lambda value: value != 73)
        assert rng.trace_lines[0].startswith("1 U 100 -> 73 tries=1 raw=")
        assert rng.trace_lines[0].endswith(" raw=1563238973")

    def test_no_trace_by_default(self):
        rng = RandomSource(17)
        rng.upto(10)
        rng.flipcoin(50)
        assert rng.trace_lines == []

    def test_write_trace(self, tmp_path):
        rng = RandomSource(99, trace=True)
        rng.upto(3)
        rng.flipcoin(50)
        filename = tmp_path / "trace.txt"
        rng.write_trace(str(filename))
        lines = filename.read_text().splitlines()
        assert lines[0] == "# seed=99"
        assert lines[1:] == rng.trace_lines
