import unittest

import numpy as np

from rbmcd.data import TrainingMatrix, identity_index, shuffle_in_place
from rbmcd.rng import ParkMillerRNG


class TrainingMatrixTests(unittest.TestCase):
    def test_only_leading_inputs_are_used(self) -> None:
        values = np.array([[0.0, 1.0, 7.0], [1.0, 0.5, -3.0]])
        matrix = TrainingMatrix.from_array(values, n_inputs=2)
        self.assertEqual(matrix.n_cases, 2)
        self.assertEqual(matrix.n_cols, 3)
        np.testing.assert_allclose(matrix.means, [0.5, 0.75])
        np.testing.assert_array_equal(matrix.row(1), [1.0, 0.5])

    def test_values_are_read_only(self) -> None:
        matrix = TrainingMatrix.from_array(np.zeros((3, 2)))
        with self.assertRaises(ValueError):
            matrix.values[0, 0] = 1.0

    def test_invalid_inputs_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            TrainingMatrix.from_array(np.zeros(4))
        with self.assertRaises(ValueError):
            TrainingMatrix.from_array(np.zeros((0, 3)))
        with self.assertRaises(ValueError):
            TrainingMatrix.from_array(np.zeros((2, 3)), n_inputs=4)
        with self.assertRaises(ValueError):
            TrainingMatrix.from_array(np.array([[0.5, 1.5]]))
        with self.assertRaises(ValueError):
            TrainingMatrix.from_array(np.array([[np.nan, 0.5]]))


class ShuffleTests(unittest.TestCase):
    def test_shuffle_is_always_a_permutation(self) -> None:
        rng = ParkMillerRNG(2024)
        index = identity_index(37)
        orders = set()
        for _ in range(50):
            shuffle_in_place(index, rng)
            self.assertEqual(sorted(index.tolist()), list(range(37)))
            orders.add(tuple(index.tolist()))
        self.assertGreater(len(orders), 1)

    def test_shuffle_is_reproducible_for_a_seed(self) -> None:
        first = shuffle_in_place(identity_index(20), ParkMillerRNG(3))
        second = shuffle_in_place(identity_index(20), ParkMillerRNG(3))
        np.testing.assert_array_equal(first, second)

    def test_single_case_is_untouched(self) -> None:
        rng = ParkMillerRNG(3)
        index = shuffle_in_place(identity_index(1), rng)
        self.assertEqual(index.tolist(), [0])
        self.assertEqual(rng.state, 3)


if __name__ == "__main__":
    unittest.main()
