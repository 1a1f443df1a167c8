import logging
import time
import unittest
from unittest import mock

import numpy as np

from rbmcd.data import TrainingMatrix
from rbmcd.dispatch import (
    ForkJoinDispatcher,
    ThreadLaunchError,
    ThreadWaitError,
    partition_range,
    resolve_thread_count,
)
from rbmcd.kernel import GibbsOptions, RBMParameters


logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setLevel(logging.INFO)
    logger.addHandler(handler)
logger.propagate = False


class PartitionTests(unittest.TestCase):
    def test_ranges_are_contiguous_and_complete(self) -> None:
        for n_items in range(0, 103, 7):
            for n_parts in range(1, 9):
                ranges = partition_range(n_items, n_parts)
                self.assertEqual(len(ranges), n_parts)
                self.assertEqual(ranges[0][0], 0)
                self.assertEqual(ranges[-1][1], n_items)
                for (_, stop), (start, _) in zip(ranges, ranges[1:]):
                    self.assertEqual(stop, start)
                sizes = [stop - start for start, stop in ranges]
                self.assertEqual(sum(sizes), n_items)
                self.assertLessEqual(max(sizes) - min(sizes), 1)

    def test_invalid_partition_arguments(self) -> None:
        with self.assertRaises(ValueError):
            partition_range(10, 0)
        with self.assertRaises(ValueError):
            partition_range(-1, 2)

    def test_thread_count_shrinks_for_small_batches(self) -> None:
        self.assertEqual(resolve_thread_count(100, 8), 8)
        self.assertEqual(resolve_thread_count(40, 8), 4)
        self.assertEqual(resolve_thread_count(39, 8), 3)
        self.assertEqual(resolve_thread_count(5, 8), 1)
        self.assertEqual(resolve_thread_count(1000, 1), 1)


class ForkJoinDispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        rng = np.random.default_rng(17)
        self.n_cases = 40
        self.data = TrainingMatrix.from_array(rng.random((self.n_cases, 6)))
        self.params = RBMParameters.random(6, 4, seed=17, scale=0.1)
        self.params.in_bias[:] = rng.normal(0.0, 0.5, size=6)
        # 隐层偏置极大或极小，使隐层采样退化为确定性结果。
        self.params.hid_bias[:] = [40.0, -40.0, 40.0, -40.0]
        self.index = np.arange(self.n_cases, dtype=np.int64)
        self.options = GibbsOptions(mean_field=True, greedy_mean_field=True)

    def _run(self, max_threads: int):
        with ForkJoinDispatcher(6, 4, max_threads=max_threads) as dispatcher:
            stats = dispatcher.run_batch(
                0, self.n_cases, self.data, self.params, self.index, self.options, 2
            )
            return (
                stats.n_threads,
                stats.buffers.w_grad.copy(),
                stats.buffers.hid_bias_grad.copy(),
                stats.buffers.in_bias_grad.copy(),
                stats.buffers.hid_on_frac.copy(),
                stats.error,
            )

    def test_single_and_multi_thread_sums_agree(self) -> None:
        logger.info("开始测试：单线程与多线程的批次梯度和应在浮点误差内一致")
        single = self._run(1)
        multi = self._run(4)
        self.assertEqual(single[0], 1)
        self.assertEqual(multi[0], 4)
        for left, right in zip(single[1:5], multi[1:5]):
            np.testing.assert_allclose(left, right, rtol=1e-10, atol=1e-12)
        self.assertAlmostEqual(single[5], multi[5], places=9)

    def test_join_timeout_raises_wait_error(self) -> None:
        logger.info("开始测试：工作线程超时应抛出 ThreadWaitError")

        def _slow_worker(*args, **kwargs):
            time.sleep(0.5)

        with mock.patch("rbmcd.dispatch.run_batch_worker", side_effect=_slow_worker):
            with self.assertRaises(ThreadWaitError) as ctx:
                with ForkJoinDispatcher(6, 4, max_threads=2, join_timeout=0.05) as dispatcher:
                    dispatcher.run_batch(0, self.n_cases, self.data, self.params, self.index, self.options, 1)
        self.assertTrue(ctx.exception.timed_out)

    def test_worker_exception_raises_wait_error(self) -> None:
        with mock.patch("rbmcd.dispatch.run_batch_worker", side_effect=RuntimeError("boom")):
            with self.assertRaises(ThreadWaitError) as ctx:
                with ForkJoinDispatcher(6, 4, max_threads=2) as dispatcher:
                    dispatcher.run_batch(0, self.n_cases, self.data, self.params, self.index, self.options, 1)
        self.assertFalse(ctx.exception.timed_out)

    def test_launch_failure_raises_launch_error(self) -> None:
        dispatcher = ForkJoinDispatcher(6, 4, max_threads=2)
        try:
            with mock.patch.object(
                dispatcher._executor, "submit", side_effect=RuntimeError("can't start new thread")
            ):
                with self.assertRaises(ThreadLaunchError):
                    dispatcher.run_batch(0, self.n_cases, self.data, self.params, self.index, self.options, 1)
        finally:
            dispatcher.close(wait=False)

    def test_closed_dispatcher_refuses_work(self) -> None:
        dispatcher = ForkJoinDispatcher(6, 4)
        dispatcher.close()
        with self.assertRaises(ThreadLaunchError):
            dispatcher.run_batch(0, self.n_cases, self.data, self.params, self.index, self.options, 1)


if __name__ == "__main__":
    unittest.main()
