"""Application configuration (generator connection, orchestrator tuning, preferences).

Stored as {data_dir}/config.json and always read with defaults merged in, so
a missing or partial file is valid.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from therapy_roleplay.models import ConversationPreferences

logger = logging.getLogger(__name__)


class GeneratorConnection(BaseModel):
    provider_url: str = ""
    api_key: str = ""
    provider_format: Literal["sse", "openai", "echo"] = "echo"
    model: str = ""
    timeout: float = Field(default=120.0, gt=0)
    # sse only: consult the server's observer route before therapist turns
    strategist: bool = True


class OrchestratorSettings(BaseModel):
    """Product-tuning constants. Defaults are the shipped behaviour."""

    max_exchanges: int = Field(default=10, ge=1)
    intervention_cooldown: float = Field(default=30.0, ge=0)
    turn_delay: float = Field(default=0.05, ge=0)
    analysis_window: int = Field(default=6, ge=1)
    history_limit: int = Field(default=10, ge=1)
    history_context: int = Field(default=20, ge=1)
    repetition_window: int = Field(default=3, ge=2)
    repetition_prefix: int = Field(default=50, ge=1)
    max_consecutive_failures: int = Field(default=3, ge=1)
    story_weight: float = Field(default=0.4, ge=0)
    loop_weight: float = Field(default=0.4, ge=0)
    phase_weight: float = Field(default=0.2, ge=0)

    @property
    def weights(self) -> tuple[float, float, float]:
        return (self.story_weight, self.loop_weight, self.phase_weight)


_CONFIG_DEFAULTS: dict[str, Any] = {
    "generator": GeneratorConnection().model_dump(),
    "orchestrator": OrchestratorSettings().model_dump(),
    "preferences": ConversationPreferences().model_dump(),
}


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def get_config(data_dir: Path) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config: dict[str, Any] = json.loads(json.dumps(_CONFIG_DEFAULTS))
    path = _config_path(data_dir)
    if path.is_file():
        stored = json.loads(path.read_text())
        for section in config:
            vals = stored.get(section)
            if isinstance(vals, dict):
                config[section].update(vals)
    return config


def update_config(data_dir: Path, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into config, validate and persist. Returns full config.

    Raises pydantic.ValidationError when a merged section is invalid; nothing
    is written in that case.
    """
    config = get_config(data_dir)
    for section, vals in fields.items():
        if section in config and isinstance(vals, dict):
            config[section].update(vals)
    GeneratorConnection.model_validate(config["generator"])
    OrchestratorSettings.model_validate(config["orchestrator"])
    ConversationPreferences.model_validate(config["preferences"])
    data_dir.mkdir(parents=True, exist_ok=True)
    _config_path(data_dir).write_text(json.dumps(config, indent=2))
    logger.info("config updated: %s", ", ".join(sorted(fields)))
    return config


def settings_from_config(
    config: dict[str, Any],
) -> tuple[GeneratorConnection, OrchestratorSettings, ConversationPreferences]:
    return (
        GeneratorConnection.model_validate(config["generator"]),
        OrchestratorSettings.model_validate(config["orchestrator"]),
        ConversationPreferences.model_validate(config["preferences"]),
    )
