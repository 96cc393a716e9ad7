# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Explicit runtime configuration.

A single `Settings` object is built once by the entry point (see
`load_settings`) and handed to sessions, agents and the state machine. There
is deliberately no module-level settings instance.
"""

import os
import json
import logging

from enum import Enum
from pathlib import Path
from typing import Mapping, Optional
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

ENV_PREFIX = "CODING_AGENT_"
PACKAGE_ROOT = Path(__file__).resolve().parent.parent


class ModelTier(str, Enum):
    """Named model levels a persona can ask for."""

    BASE = "base"
    SMART = "smart"
    FAST = "fast"


class TierSettings(BaseModel):
    """The concrete model, endpoint and credential behind a tier."""

    model: str
    base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None


class Settings(BaseModel):
    tiers: dict[ModelTier, TierSettings] = Field(
        default_factory=lambda: {ModelTier.BASE: TierSettings(model="gpt-4.1-mini")}
    )
    max_tool_calls: int = Field(default=25, gt=0)
    max_tokens_default: int = 32000
    max_tokens_overrides: dict[str, int] = Field(
        default_factory=lambda: {"qwen3-235b-a22b": 16000}
    )
    log_level: str = "INFO"
    workflows_dir: Path = PACKAGE_ROOT / "config" / "workflows"
    personas_file: Path = PACKAGE_ROOT / "config" / "personas.json"
    workdir: Path = Field(default_factory=Path.cwd)

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    def get_tier(self, tier: ModelTier | str) -> TierSettings | None:
        """Return the settings for a tier, or None if it is not configured."""
        try:
            return self.tiers.get(ModelTier(tier))
        except ValueError:
            return None

    def get_max_tokens(self, model_id: str) -> int:
        """Output token budget for a model id.

        Overrides match on substring so that provider prefixes such as
        ``qwen/qwen3-235b-a22b`` still pick up the override.
        """
        for fragment, budget in self.max_tokens_overrides.items():
            if fragment in model_id:
                return budget
        return self.max_tokens_default


def _env_overrides(env: Mapping[str, str]) -> dict:
    overrides: dict = {}
    tiers: dict[str, dict] = {}
    for tier in ModelTier:
        for field in ("model", "base_url", "api_key"):
            key = f"{ENV_PREFIX}{tier.value.upper()}_{field.upper()}"
            if env.get(key):
                tiers.setdefault(tier.value, {})[field] = env[key]
    if tiers:
        overrides["tiers"] = tiers

    if env.get(f"{ENV_PREFIX}MAX_TOOL_CALLS"):
        overrides["max_tool_calls"] = env[f"{ENV_PREFIX}MAX_TOOL_CALLS"]
    if env.get(f"{ENV_PREFIX}LOG_LEVEL"):
        overrides["log_level"] = env[f"{ENV_PREFIX}LOG_LEVEL"]
    if env.get(f"{ENV_PREFIX}WORKFLOWS_DIR"):
        overrides["workflows_dir"] = env[f"{ENV_PREFIX}WORKFLOWS_DIR"]
    if env.get(f"{ENV_PREFIX}PERSONAS_FILE"):
        overrides["personas_file"] = env[f"{ENV_PREFIX}PERSONAS_FILE"]
    return overrides


def load_settings(
    path: Path | str | None = None, env: Mapping[str, str] | None = None
) -> Settings:
    """Build settings from defaults, an optional JSON file and the environment.

    Environment variables win over the file. A tier given in the environment
    is merged field by field into the same tier from the file, so a key can be
    supplied without repeating the model name.

    Args:
        path: Optional JSON file with any subset of the Settings fields
        env: Mapping to read overrides from, defaults to ``os.environ``

    Returns:
        The validated Settings object
    """
    env = os.environ if env is None else env
    data: dict = {}

    if path is not None:
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read settings file {path}: {e}") from e

    overrides = _env_overrides(env)
    env_tiers = overrides.pop("tiers", {})
    data.update(overrides)

    if env_tiers:
        if "tiers" in data:
            merged = {str(k): dict(v) for k, v in data["tiers"].items()}
        else:
            merged = {k.value: v.model_dump() for k, v in Settings().tiers.items()}
        for tier, fields in env_tiers.items():
            merged.setdefault(tier, {}).update(fields)
        data["tiers"] = merged

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e

    logger.debug(
        f"Loaded settings with tiers {[t.value for t in settings.tiers]} "
        f"and max_tool_calls={settings.max_tool_calls}"
    )
    return settings
