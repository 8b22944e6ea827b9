"""Strategy overrides loaded from strategy.yaml.

The YAML file is optional. Its ``strategy`` and ``simulation`` sections are
merged over the environment-driven Settings, e.g.::

    strategy:
      min_score: 75
      tp_ladder: "1.5:0.4,3.0:0.3,6.0:0.3"
    simulation:
      max_hold_minutes: 90
      fee_pct: 0.04
"""

import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from app.config import Settings, get_settings
from core.models.config import SimulationConfig, StrategyConfig

logger = logging.getLogger(__name__)

_DEFAULT_PATH = Path(__file__).parent.parent / "strategy.yaml"


class StrategyFile(BaseModel):
    """Raw sections of strategy.yaml."""

    model_config = ConfigDict(extra="ignore")

    strategy: dict = {}
    simulation: dict = {}


def _read(config_path: Path) -> StrategyFile:
    # Settings read os.environ, so the .env beside the file must be loaded first
    load_dotenv(config_path.parent / ".env", override=False)

    if not config_path.exists():
        logger.info("No strategy.yaml found at %s, using environment settings", config_path)
        return StrategyFile()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{config_path}: expected a mapping at top level")
    return StrategyFile(**raw)


def _known(section: dict, model: type[BaseModel], name: str) -> dict:
    unknown = set(section) - set(model.model_fields)
    if unknown:
        logger.warning(f"Ignoring unknown {name} keys in strategy.yaml: {sorted(unknown)}")
    return {k: v for k, v in section.items() if k in model.model_fields}


def load_strategy_config(
    path: Path | None = None, settings: Settings | None = None
) -> StrategyConfig:
    """Load the engine config: Settings defaults with YAML overrides applied."""
    config_path = path or _DEFAULT_PATH
    file = _read(config_path)
    settings = settings or get_settings()
    overrides = _known(file.strategy, StrategyConfig, "strategy")
    config = settings.to_strategy_config(**overrides)
    logger.info(
        "Loaded strategy config: %d overrides, min_score=%.1f, cooldown=%.1fmin",
        len(overrides),
        config.min_score,
        config.cooldown_minutes,
    )
    return config


def load_simulation_config(
    path: Path | None = None, settings: Settings | None = None
) -> SimulationConfig:
    """Load the simulator config the same way as the strategy config."""
    config_path = path or _DEFAULT_PATH
    file = _read(config_path)
    settings = settings or get_settings()
    base = settings.to_simulation_config().model_dump()
    base.update(_known(file.simulation, SimulationConfig, "simulation"))
    return SimulationConfig(**base)
