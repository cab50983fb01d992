import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .supervisor import BotSupervisor

log = logging.getLogger(__name__)


def setup_initial_environment(manager: "BotSupervisor") -> None:
    """
    Creates the data directories and reconciles the registry with the bot folders on disk.

    Folders without a registry record are registered; records without a folder
    are kept (they list as Stopped and fail to start until redeployed).

    :param manager: The BotSupervisor instance.
    """
    manager.bots_dir.mkdir(parents=True, exist_ok=True)
    manager.registry.path.parent.mkdir(parents=True, exist_ok=True)

    on_disk = {p.name for p in manager.bots_dir.iterdir() if p.is_dir() and not p.name.startswith(".")}
    registered = set(manager.registry.list_names())

    for name in sorted(on_disk - registered):
        log.warning(f"Found bot folder '{name}' without a registry record. Registering it.")
        manager.registry.register(name)

    for name in sorted(registered - on_disk):
        log.warning(f"Bot '{name}' is registered but its folder is missing. Redeploy it to run it again.")

    log.info(f"Bot registry ready with {len(on_disk | registered)} bot(s) in '{manager.bots_dir}'.")
