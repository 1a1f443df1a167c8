"""配置加载与训练参数解析工具。"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


def read_config_file(path: Path) -> Dict[str, Any]:
    """读取指定 YAML 文件，文件缺失或格式无效时返回空字典。"""

    if not path.exists():
        return {}

    try:
        with path.open("r", encoding="utf-8") as config_file:
            data = yaml.safe_load(config_file) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("读取配置文件失败：%s", exc)
        return {}

    if not isinstance(data, dict):
        logger.warning("配置文件格式无效：%r", data)
        return {}
    return data


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    """加载项目根目录下的 config.yaml。"""

    return read_config_file(_CONFIG_PATH)


def get_logging_level(default_level: int = logging.INFO, config: Optional[Dict[str, Any]] = None) -> int:
    """根据配置返回日志等级，未配置时使用默认值。"""

    config = load_config() if config is None else config
    logging_cfg = config.get("logging")
    if isinstance(logging_cfg, dict):
        level_name = logging_cfg.get("level")
        if isinstance(level_name, str):
            level_value = getattr(logging, level_name.upper(), None)
            if isinstance(level_value, int):
                return level_value
    return default_level


def get_training_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """合并 training 与 threading 配置块，供 CDConfig.from_mapping 使用。"""

    config = load_config() if config is None else config
    merged: Dict[str, Any] = {}
    for block in ("training", "threading"):
        block_cfg = config.get(block)
        if isinstance(block_cfg, dict):
            merged.update(block_cfg)
        elif block_cfg is not None:
            logger.warning("配置块 %s 必须是映射，已忽略：%r", block, block_cfg)
    return merged


__all__ = ["load_config", "read_config_file", "get_logging_level", "get_training_config"]
