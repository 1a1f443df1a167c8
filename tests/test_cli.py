import contextlib
import importlib.util
import io
import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

SCRIPT_PATH = Path(__file__).resolve().parent.parent / "scripts" / "train_rbm.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("train_rbm_script", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


class TrainScriptTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)
        self.script = _load_script()

        rng = np.random.default_rng(0)
        values = (rng.random((40, 6)) < 0.4).astype(np.float64)
        self.npy_path = self.root / "cases.npy"
        np.save(self.npy_path, values)
        self.npz_path = self.root / "cases.npz"
        np.savez(self.npz_path, x=values)

        self.config_path = self.root / "config.yaml"
        self.config_path.write_text(
            "logging:\n"
            "  level: WARNING\n"
            "training:\n"
            "  n_batches: 2\n"
            "  max_epochs: 3\n"
            "  convergence_crit: 0.0\n"
            "threading:\n"
            "  max_threads: 2\n",
            encoding="utf-8",
        )

    def _run(self, *extra: str) -> dict:
        buffer = io.StringIO()
        with contextlib.redirect_stdout(buffer):
            code = self.script.main(
                ["--config", str(self.config_path), "--hidden", "3", *extra]
            )
        self.assertEqual(code, 0)
        return json.loads(buffer.getvalue().strip().splitlines()[-1])

    def test_trains_from_npy(self) -> None:
        summary = self._run("--data", str(self.npy_path))
        self.assertEqual(summary["status"], "max_epochs")
        self.assertEqual(summary["epochs"], 3)
        self.assertEqual(summary["n_inputs"], 6)
        self.assertEqual(summary["n_hidden"], 3)
        self.assertFalse(summary["incomplete"])

    def test_command_line_overrides_config(self) -> None:
        summary = self._run("--data", str(self.npz_path), "--epochs", "1", "--n-inputs", "4")
        self.assertEqual(summary["epochs"], 1)
        self.assertEqual(summary["n_inputs"], 4)

    def test_resolve_config_applies_overrides(self) -> None:
        args = self.script.parse_args(
            ["--data", "unused.npy", "--max-threads", "3", "--seed", "9"]
        )
        config = self.script.resolve_config({"training": {"max_epochs": 7}}, args)
        self.assertEqual(config.max_threads, 3)
        self.assertEqual(config.seed, 9)
        self.assertEqual(config.max_epochs, 7)

    def test_missing_npz_key_is_reported(self) -> None:
        with self.assertRaises(ValueError):
            self.script.load_matrix(self.npz_path, "missing")


if __name__ == "__main__":
    unittest.main()
