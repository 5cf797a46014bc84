# configs/config_manager.py
import hashlib
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from configs.engine_config import EngineConfig
from utils.errors import ConfigurationInvalid

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/golden_config.yaml"


class ConfigManager:
    """
    Loads, validates, and locks the engine configuration with SHA256 hashing.

    Validation is all-or-nothing: every problem is collected into a single
    ConfigurationInvalid so startup fails once with the full list.
    """

    def __init__(self, config_path: Optional[str] = None, env: Optional[Mapping[str, str]] = None):
        self.config_path = config_path or os.environ.get("ENGINE_CONFIG_PATH", DEFAULT_CONFIG_PATH)
        self._env = dict(os.environ if env is None else env)
        self._config: Optional[EngineConfig] = None
        self._file_hash: Optional[str] = None

    def load(self) -> EngineConfig:
        path_obj = Path(self.config_path)
        if not path_obj.exists():
            raise ConfigurationInvalid(
                f"Engine config not found at {self.config_path}",
                problems=[f"missing file: {self.config_path}"],
            )

        with open(path_obj, "rb") as f:
            content = f.read()
        self._file_hash = hashlib.sha256(content).hexdigest()

        try:
            raw = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationInvalid(f"Config is not valid YAML: {e}", problems=[str(e)]) from e

        self._config = self.validate(raw).with_secrets(self._env)

        logger.info(f"Loaded engine config: {self.config_path}")
        logger.info(f"Config SHA256 Hash: {self._file_hash}")
        logger.info(f"Config fingerprint: {self._config.fingerprint()}")
        self._warn_missing_keys()
        return self._config

    @staticmethod
    def validate(raw: Any) -> EngineConfig:
        """Validate a raw mapping into a frozen EngineConfig."""
        if not isinstance(raw, dict):
            raise ConfigurationInvalid(
                "Config root must be a mapping",
                problems=[f"root is {type(raw).__name__}"],
            )
        try:
            return EngineConfig.model_validate(raw)
        except PydanticValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            ]
            for p in problems:
                logger.error(f"CONFIG_INVALID: {p}")
            raise ConfigurationInvalid(
                f"Engine config rejected with {len(problems)} problem(s)",
                problems=problems,
            ) from e

    def _warn_missing_keys(self):
        for name, p in self._config.market_data.providers.items():
            if p.enabled and p.api_key_env and not p.api_key:
                logger.warning(f"Provider {name}: {p.api_key_env} not set, provider will report DISABLED")

    @property
    def config(self) -> EngineConfig:
        if self._config is None:
            return self.load()
        return self._config

    @property
    def config_hash(self) -> Optional[str]:
        return self._file_hash


def config_from_dict(raw: Dict[str, Any]) -> EngineConfig:
    return ConfigManager.validate(raw)
