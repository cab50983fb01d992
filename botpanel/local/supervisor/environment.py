import os
import logging
from typing import Dict, Mapping, Optional

from botpanel.local.registry import BotRegistry

log = logging.getLogger(__name__)


def resolve_environment(registry: BotRegistry, name: str, base_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Builds the environment a bot's process will see.

    The supervisor's own environment is overlaid with the bot's persisted
    overrides; an override wins on key collision. The registry is read on every
    call so a bot always starts with the latest saved values.

    :param registry: The bot registry holding the overrides.
    :param name: The bot name.
    :param base_env: The environment to start from. Defaults to `os.environ`.
    :raises NotFoundError: If the bot is not registered.
    """
    env = dict(os.environ if base_env is None else base_env)
    overrides = registry.get_env(name)
    env.update(overrides)
    if overrides:
        log.debug(f"Applied {len(overrides)} environment override(s) for '{name}': {sorted(overrides)}")
    return env
