"""
Tests for the seeded random source.
"""
import pytest

from markov_service.services.randgen import SeededRandom


class TestSeededRandom:
    """Test suite for SeededRandom."""

    def test_same_seed_same_stream(self):
        """Test two sources with one seed produce identical floats."""
        a = SeededRandom(7)
        b = SeededRandom(7)

        assert [a.random() for _ in range(10)] == [b.random() for _ in range(10)]

    def test_reseed_restarts_stream(self):
        """Test seed() rewinds the stream."""
        rng = SeededRandom(3)
        first = [rng.random() for _ in range(5)]
        rng.seed(3)

        assert [rng.random() for _ in range(5)] == first
        assert rng.current_seed == 3

    def test_random_in_unit_interval(self, seeded_rng):
        """Test floats fall in [0, 1)."""
        for _ in range(200):
            value = seeded_rng.next_float()
            assert 0.0 <= value < 1.0

    def test_choice(self, seeded_rng):
        """Test choice picks a member."""
        items = ["a", "b", "c"]

        for _ in range(20):
            assert seeded_rng.choice(items) in items

    def test_choice_empty_raises(self, seeded_rng):
        """Test choice on an empty sequence."""
        with pytest.raises(ValueError):
            seeded_rng.choice([])


class TestWeightedDistribution:
    """Test suite for weighted_distribution."""

    def test_linear_normalisation(self, seeded_rng):
        """Test weights are divided by their sum."""
        dist = seeded_rng.weighted_distribution([1, 3])

        assert dist == pytest.approx([0.25, 0.75])

    def test_empty_weights(self, seeded_rng):
        """Test empty weights give an empty distribution."""
        assert seeded_rng.weighted_distribution([]) == []

    def test_negative_weight_raises(self, seeded_rng):
        """Test negative weights are rejected."""
        with pytest.raises(ValueError):
            seeded_rng.weighted_distribution([1, -1])

    def test_temperature_sums_to_one(self, seeded_rng):
        """Test tempered distribution is normalised."""
        dist = seeded_rng.weighted_distribution([1, 2, 5], temperature=1.5)

        assert sum(dist) == pytest.approx(1.0)

    def test_low_temperature_sharpens(self, seeded_rng):
        """Test low temperature pushes mass to the heaviest weight."""
        dist = seeded_rng.weighted_distribution([1, 2, 5], temperature=0.1)

        assert dist[2] == pytest.approx(1.0, abs=1e-6)

    def test_high_temperature_flattens(self, seeded_rng):
        """Test high temperature approaches uniform."""
        dist = seeded_rng.weighted_distribution([1, 2, 5], temperature=1000)

        for p in dist:
            assert p == pytest.approx(1 / 3, abs=0.01)

    def test_tiny_temperature_is_clamped(self, seeded_rng):
        """Test temperatures below 0.01 behave like 0.01."""
        assert seeded_rng.weighted_distribution([1, 2], temperature=0.0001) == pytest.approx(
            seeded_rng.weighted_distribution([1, 2], temperature=0.01)
        )

    def test_large_weights_do_not_overflow(self, seeded_rng):
        """Test softmax stays finite for large counts."""
        dist = seeded_rng.weighted_distribution([5000, 4000], temperature=0.01)

        assert dist == pytest.approx([1.0, 0.0])


class TestSampleIndex:
    """Test suite for sample_index."""

    def test_index_in_range(self, seeded_rng):
        """Test returned index is valid."""
        for _ in range(50):
            assert 0 <= seeded_rng.sample_index([0.2, 0.3, 0.5]) < 3

    def test_certain_outcomes(self, seeded_rng):
        """Test zero-probability entries are never chosen."""
        for _ in range(50):
            assert seeded_rng.sample_index([1.0, 0.0]) == 0
            assert seeded_rng.sample_index([0.0, 1.0]) == 1

    def test_rounding_falls_to_last(self, seeded_rng):
        """Test a distribution summing slightly under 1 still returns an index."""
        for _ in range(50):
            assert seeded_rng.sample_index([0.0, 0.0, 0.0]) == 2

    def test_empty_distribution_raises(self, seeded_rng):
        """Test empty distribution."""
        with pytest.raises(ValueError):
            seeded_rng.sample_index([])

    def test_follows_weights(self):
        """Test empirical frequencies track the distribution."""
        rng = SeededRandom(123)
        hits = sum(rng.sample_index([0.8, 0.2]) == 0 for _ in range(2000))

        assert 1450 < hits < 1750


class TestOrderings:
    """Test suite for shuffle and random_ordering."""

    def test_shuffle_keeps_members(self, seeded_rng):
        """Test shuffle returns a permutation without mutating input."""
        items = [1, 2, 3, 4, 5]
        result = seeded_rng.shuffle(items)

        assert sorted(result) == items
        assert items == [1, 2, 3, 4, 5]

    def test_random_ordering_int(self, seeded_rng):
        """Test random_ordering(n) permutes range(n)."""
        assert seeded_rng.random_ordering(1) == [0]
        assert sorted(seeded_rng.random_ordering(4)) == [0, 1, 2, 3]

    def test_random_ordering_list(self, seeded_rng):
        """Test random_ordering(list) permutes the list."""
        arr = [0, 3, 5, 7]

        assert sorted(seeded_rng.random_ordering(arr)) == arr
        assert seeded_rng.random_ordering(["a"]) == ["a"]

    def test_random_ordering_bad_arg(self, seeded_rng):
        """Test random_ordering rejects other types."""
        with pytest.raises(ValueError):
            seeded_rng.random_ordering("abc")

    def test_random_bias_in_range(self, seeded_rng):
        """Test random_bias stays between the bounds and the bias."""
        for _ in range(50):
            value = seeded_rng.random_bias(0, 10, 5)
            assert 0 <= value <= 10
