#!/usr/bin/env python3
"""Command-line CD-k training of a single RBM layer.

Hyper-parameters are resolved from ``config.yaml`` (``training`` and
``threading`` blocks) with command-line overrides.  The training matrix is read
from a ``.npy`` file or an ``.npz`` archive.  Ctrl-C requests a cooperative
stop at the next batch boundary; the JSON summary is printed to stdout.
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from rbmcd import CancellationToken, CDConfig, RBMParameters, TrainingMatrix, train_rbm
from rbmcd.config import get_training_config, read_config_file

LOGGER = logging.getLogger("train_rbm")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Multi-threaded CD-k training of one RBM layer")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"), help="Path to configuration file")
    parser.add_argument("--data", type=Path, required=True, help="Training matrix (.npy or .npz)")
    parser.add_argument("--data-key", type=str, default="x", help="Array key inside an .npz archive")
    parser.add_argument("--n-inputs", type=int, help="Number of leading columns used as visible units")
    parser.add_argument("--hidden", type=int, default=64, help="Number of hidden units")
    parser.add_argument("--max-threads", type=int, help="Override threading.max_threads")
    parser.add_argument("--epochs", type=int, help="Override training.max_epochs")
    parser.add_argument("--seed", type=int, help="Override training.seed (also seeds weight init)")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default from config)")
    return parser.parse_args(argv)


def setup_logging(level: Optional[str], config_data: Dict[str, Any]) -> None:
    logging_cfg = config_data.get("logging") if isinstance(config_data.get("logging"), dict) else {}
    level_name = level or logging_cfg.get("level", "INFO")
    resolved_level = getattr(logging, str(level_name).upper(), logging.INFO)
    logging.basicConfig(level=resolved_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def load_matrix(path: Path, key: str) -> np.ndarray:
    if path.suffix == ".npz":
        with np.load(path) as archive:
            if key not in archive:
                raise ValueError(f"{path} has no array named {key!r}")
            return np.asarray(archive[key], dtype=np.float64)
    return np.asarray(np.load(path), dtype=np.float64)


def resolve_config(config_data: Dict[str, Any], args: argparse.Namespace) -> CDConfig:
    mapping = get_training_config(config_data)
    if args.max_threads is not None:
        mapping["max_threads"] = args.max_threads
    if args.epochs is not None:
        mapping["max_epochs"] = args.epochs
    if args.seed is not None:
        mapping["seed"] = args.seed
    return CDConfig.from_mapping(mapping)


def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config_data = read_config_file(args.config)
    setup_logging(args.log_level, config_data)

    config = resolve_config(config_data, args)
    values = load_matrix(args.data, args.data_key)
    matrix = TrainingMatrix.from_array(values, args.n_inputs)
    params = RBMParameters.random(matrix.n_inputs, args.hidden, seed=config.seed)

    cancel = CancellationToken()

    def _request_stop(signum, frame) -> None:
        LOGGER.warning("收到中断信号，将在当前批次结束后停止训练")
        cancel.cancel()

    previous_handler = signal.signal(signal.SIGINT, _request_stop)
    try:
        result = train_rbm(matrix, params, config, cancel=cancel, logger=LOGGER)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    summary = {
        "status": result.status.value,
        "error": result.error,
        "epochs": result.epochs_completed,
        "incomplete": result.incomplete,
        "partial_error": result.partial_error,
        "learning_rate": result.learning_rate,
        "momentum": result.momentum,
        "chain_length": result.chain_length,
        "final_ratio": _finite_or_none(result.history[-1].convergence_ratio) if result.history else None,
        "n_inputs": matrix.n_inputs,
        "n_hidden": params.n_hidden,
    }
    print(json.dumps(summary, ensure_ascii=False))
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
