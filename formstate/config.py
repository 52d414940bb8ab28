"""Engine configuration.

Settings are plain dataclass defaults, overridable from the environment or
from the ``formstate:`` section of a YAML file:

    formstate:
      semantic_model: gpt-4o-mini
      semantic_timeout: 15
      warn_on_duplicate_names: true
      export_format: yaml

The semantic credential is read from the environment only
(``FORMSTATE_SEMANTIC_API_KEY``, falling back to ``OPENAI_API_KEY``); it is
never written to or read from configuration files.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

ENV_API_KEY = "FORMSTATE_SEMANTIC_API_KEY"
ENV_API_KEY_FALLBACK = "OPENAI_API_KEY"
ENV_MODEL = "FORMSTATE_SEMANTIC_MODEL"
ENV_TIMEOUT = "FORMSTATE_SEMANTIC_TIMEOUT"


@dataclass(frozen=True)
class EngineConfig:
    """Configuration shared by engines and the semantic validator.

    Attributes:
        semantic_api_key: Credential for the semantic backend; None skips semantic checks
        semantic_model: Model used by the semantic backend
        semantic_timeout: Backend request timeout in seconds
        warn_on_duplicate_names: Log a warning when a field name repeats across steps
        export_format: Default serializer format ("json" or "yaml")
    """
    semantic_api_key: Optional[str] = None
    semantic_model: str = "gpt-4o-mini"
    semantic_timeout: float = 30.0
    warn_on_duplicate_names: bool = True
    export_format: str = "json"

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """Build a config from environment variables on top of the defaults."""
        env = os.environ if environ is None else environ
        config = cls()
        overrides: Dict[str, Any] = {}
        key = env.get(ENV_API_KEY) or env.get(ENV_API_KEY_FALLBACK)
        if key:
            overrides["semantic_api_key"] = key
        if env.get(ENV_MODEL):
            overrides["semantic_model"] = env[ENV_MODEL]
        if env.get(ENV_TIMEOUT):
            try:
                overrides["semantic_timeout"] = float(env[ENV_TIMEOUT])
            except ValueError:
                logger.warning("Ignoring non-numeric %s=%r", ENV_TIMEOUT, env[ENV_TIMEOUT])
        return replace(config, **overrides)

    @classmethod
    def load(
        cls,
        path: Union[str, Path],
        environ: Optional[Dict[str, str]] = None,
    ) -> "EngineConfig":
        """Load settings from a YAML file, then apply environment overrides.

        A missing file yields the environment/default configuration.
        """
        config = cls.from_env(environ)
        config_path = Path(path)
        if not config_path.exists():
            return config

        with open(config_path, encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}
        section = (document.get("formstate") or {}) if isinstance(document, dict) else {}

        allowed = {f.name for f in fields(cls)} - {"semantic_api_key"}
        overrides = {k: v for k, v in section.items() if k in allowed}
        unknown = sorted(set(section) - allowed)
        if unknown:
            logger.warning("Ignoring unknown formstate settings in %s: %s", config_path, unknown)
        # environment wins over the file for the model/timeout it sets explicitly
        env = os.environ if environ is None else environ
        if env.get(ENV_MODEL):
            overrides.pop("semantic_model", None)
        if env.get(ENV_TIMEOUT):
            overrides.pop("semantic_timeout", None)
        return replace(config, **overrides)


__all__ = [
    "EngineConfig",
    "ENV_API_KEY",
    "ENV_API_KEY_FALLBACK",
    "ENV_MODEL",
    "ENV_TIMEOUT",
]
