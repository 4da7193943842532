"""
Tests for the Poisson online bootstrap resampler.
"""

import unittest
import numpy as np

from base_learners import Instance
from poisson_resampler import PoissonResampler, ResamplerConfig


class TestPoissonResampler(unittest.TestCase):
    """Replication counts and weighted copies."""

    def test_draws_are_non_negative_integers(self):
        resampler = PoissonResampler(random_state=0)

        for _ in range(200):
            k = resampler.draw()
            self.assertIsInstance(k, int)
            self.assertGreaterEqual(k, 0)

    def test_distribution_matches_poisson_one(self):
        resampler = PoissonResampler(random_state=42)
        counts = np.array([resampler.draw() for _ in range(20000)])

        self.assertAlmostEqual(counts.mean(), 1.0, delta=0.05)
        self.assertAlmostEqual(counts.var(), 1.0, delta=0.05)
        self.assertAlmostEqual((counts == 0).mean(), np.exp(-1), delta=0.02)

    def test_reproducible_with_seed(self):
        first = PoissonResampler(random_state=123)
        second = PoissonResampler(random_state=123)
        a = [first.draw() for _ in range(100)]
        b = [second.draw() for _ in range(100)]

        np.testing.assert_array_equal(a, b)

    def test_shared_stream_is_not_reseeded(self):
        rng = np.random.RandomState(5)
        first = PoissonResampler(rng=rng)
        second = PoissonResampler(rng=rng)

        interleaved = [first.draw(), second.draw(), first.draw(), second.draw()]
        reference = PoissonResampler(random_state=5)
        expected = [reference.draw() for _ in range(4)]

        np.testing.assert_array_equal(interleaved, expected)

    def test_rejects_non_positive_rate(self):
        with self.assertRaises(ValueError):
            PoissonResampler(config=ResamplerConfig(lam=0.0))

    def test_resample_weights_copy(self):
        resampler = PoissonResampler(random_state=1)
        instance = Instance(x=np.array([1.0, 2.0]), y=0, weight=1.5)

        for _ in range(100):
            weighted = resampler.resample(instance)
            if weighted is None:
                continue
            self.assertIsNot(weighted, instance)
            self.assertEqual(weighted.y, 0)
            k = weighted.weight / 1.5
            self.assertEqual(k, round(k))
            self.assertGreaterEqual(k, 1)

        self.assertEqual(instance.weight, 1.5)


if __name__ == "__main__":
    unittest.main()
