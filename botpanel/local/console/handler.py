import time
import psutil
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from botpanel.local.config import effective_settings as config
from botpanel.local.console.client import PanelClient, PanelClientError
from botpanel.local.database import LogDBManager

log = logging.getLogger(__name__)


def _format_uptime(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    return time.strftime('%H:%M:%S', time.gmtime(seconds))


def _resource_usage(pid: Optional[int]) -> str:
    """Returns a CPU/memory summary for a bot process, or an empty string when it cannot be read."""
    if pid is None:
        return ""
    try:
        p = psutil.Process(pid)
        cpu = p.cpu_percent(interval=0.1)
        mem = p.memory_info().rss
        return f"| CPU: {cpu:.1f}% | MEM: {mem/1024/1024:.1f} MB"
    except psutil.NoSuchProcess:
        return "| (exited)"
    except psutil.AccessDenied:
        return "| (access denied)"


def display_bots(client: PanelClient) -> None:
    """Lists every bot known to the running server with its status and resource usage."""
    try:
        bots: List[Dict[str, Any]] = client.list_bots()
    except PanelClientError as e:
        print(f"\nERROR: {e}\n")
        return

    if not bots:
        print("\nNo bots deployed yet. Use 'deploy <file.zip>' to add one.\n")
        return

    print("\n--- Bots ---")
    for bot in bots:
        pid = bot.get("pid")
        pid_text = f"PID {pid:<8}" if pid else f"{'':<12}"
        print(
            f"  - {bot['name']:<25} : {bot['status']:<8} | {pid_text} | Uptime: {_format_uptime(bot.get('uptime'))} "
            f"{_resource_usage(pid)}"
        )
    print("-" * 12 + "\n")


def handle_bot_action(client: PanelClient, action: str, args: List[str]) -> None:
    """
    Forwards a lifecycle command (start, stop, restart, install, delete) to the server.

    :param action: The lifecycle operation.
    :param args: The bot names to apply it to, in order.
    """
    if not args:
        print(f"Usage: {action} <bot> [<bot> ...]")
        return

    for name in args:
        try:
            result = client.lifecycle(action, name)
            print(f"{name}: {result.get('message', 'OK')}")
        except PanelClientError as e:
            print(f"{name}: ERROR: {e}")


def handle_deploy_command(client: PanelClient, args: List[str]) -> None:
    """Uploads a local zip archive; an existing bot with the same name is upgraded in place."""
    if not args:
        print("Usage: deploy <path/to/bot.zip>")
        return

    archive_path = Path(args[0]).expanduser()
    if not archive_path.is_file():
        print(f"Error: '{archive_path}' is not a file.")
        return

    try:
        result = client.deploy(archive_path)
        print(f"Deployed '{result['name']}'. Use 'install {result['name']}' then 'start {result['name']}'.")
    except PanelClientError as e:
        print(f"Deploy failed: {e}")


def _env_help() -> None:
    print("\nEnv Command Help:")
    print("  env <bot>                  - Show the bot's environment overrides.")
    print("  env <bot> set KEY VALUE    - Set an override. Takes effect on the next start.")
    print("  env <bot> unset KEY        - Remove an override.")


def handle_env_command(client: PanelClient, args: List[str]) -> None:
    """
    Handles all sub-commands for the 'env' command.

    :param args: `<bot> [set KEY VALUE | unset KEY]`.
    """
    if not args or args[0].lower() == "help":
        _env_help()
        return

    name, sub_args = args[0], args[1:]
    try:
        if not sub_args:
            env = client.get_env(name)
            print(f"\n--- Environment overrides for '{name}' ---")
            if not env:
                print("  (none)")
            for key in sorted(env):
                print(f"  {key} = {env[key]}")
            print()
        elif sub_args[0].lower() == "set" and len(sub_args) >= 3:
            key, value = sub_args[1], " ".join(sub_args[2:])
            client.set_env_var(name, key, value)
            print(f"'{key}' set for '{name}'. Restart the bot to apply it.")
        elif sub_args[0].lower() == "unset" and len(sub_args) == 2:
            client.delete_env_var(name, sub_args[1])
            print(f"'{sub_args[1]}' removed from '{name}'.")
        else:
            _env_help()
    except PanelClientError as e:
        print(f"Error: {e}")


def _config_show() -> None:
    """Displays the current value of every modifiable setting."""
    print("\n--- Current Bot Panel Configuration ---")
    print(f"(Overrides file: {config.OVERRIDES_JSON_PATH})")
    for key, value in config.current_overrides().items():
        print(f"  {key} = {value}")
    print("---")
    print("Use 'config set <KEY> <VALUE>' to change a setting.")
    print("A server restart is required for changes to apply.")
    print("---------------------------------------\n")


def _config_set(args: List[str]) -> None:
    if len(args) < 2:
        print("Usage: config set <SETTING_NAME> <VALUE>")
        return

    success, message = config.update_setting(args[0], " ".join(args[1:]))
    print(message if success else f"Error: {message}")


def _config_help() -> None:
    print("\nConfig Command Help:")
    print("  config show                - Display all modifiable settings.")
    print("  config set KEY VALUE       - Change a setting. Requires a server restart to apply.")
    print("  config help                - Show this help message.")


def handle_config_command(args: List[str]) -> None:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param args: A list of string arguments following the 'config' command.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show()
    elif sub_command == "set":
        _config_set(args[1:])
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")


def handle_logs_command(args: List[str], db_path: Optional[Path] = None) -> None:
    """
    Prints the most recent log entries stored by the server, optionally for one bot only.

    :param args: An optional bot name.
    :param db_path: The log database. Defaults to `LOG_DB_PATH`.
    """
    db_path = db_path or config.LOG_DB_PATH
    if not db_path.exists():
        print("No log database found. Has the server been started?")
        return

    unit = args[0] if args else None
    log_db = LogDBManager(db_path)
    try:
        entries = log_db.fetch_last_entries(config.LOG_HISTORY_COUNT, unit=unit, include_debug=config.VERBOSE_LOGGING)
    except Exception as e:
        log.error(f"Failed to fetch log history: {e}")
        return

    scope = f" for '{unit}'" if unit else ""
    print(f"\n--- Displaying last {len(entries)} log entries{scope} ---")
    for entry in entries:
        print(entry.message)
    print()


def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    config.VERBOSE_LOGGING = not config.VERBOSE_LOGGING
    new_level = logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO

    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        # FileHandler subclasses StreamHandler; only the console one is wanted.
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if config.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
        log.debug("Debug logging test: This message should only appear when verbose is ON.")
    else:
        print("Could not find console handler to modify level.")


def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  serve [host] [port]        - Run the bot panel server in the foreground.")
    print("  list                       - Show all bots with status, PID and uptime.")
    print("  start <bot>                - Start a bot.")
    print("  stop <bot>                 - Stop a running bot.")
    print("  restart <bot>              - Restart a bot (starts it if stopped).")
    print("  install <bot>              - Install the bot's dependencies.")
    print("  delete <bot>               - Delete a stopped bot and its files.")
    print("  deploy <file.zip>          - Upload a bot archive (upgrades an existing bot).")
    print("  env <bot> [set|unset ...]  - Manage a bot's environment. Use 'env help' for details.")
    print("  logs [bot]                 - Show recent log entries, optionally for one bot.")
    print("  config <cmd>               - Manage configuration. Use 'config help' for more details.")
    print("  verbose                    - Toggle detailed DEBUG log output in the console.")
    print("  exit                       - Exit the management console.")
    print()
