import logging
from typing import List, Optional

from botpanel.local.console.client import PanelClient
from botpanel.local.console.handler import (display_bots, handle_bot_action, handle_config_command,
                                            handle_deploy_command, handle_env_command, handle_logs_command,
                                            print_help, toggle_verbose_logging)

log = logging.getLogger(__name__)

LIFECYCLE_COMMANDS = ("start", "stop", "restart", "install", "delete")


def _serve(args: List[str]) -> None:
    # Imported lazily so console-only commands do not pull in the ASGI stack.
    from botpanel.web.setup import run_server

    host = args[0] if args else None
    try:
        port = int(args[1]) if len(args) > 1 else None
    except ValueError:
        print(f"Invalid port: '{args[1]}'")
        return
    run_server(host, port)


def execute_command(command: str, args: List[str], client: Optional[PanelClient] = None) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start', 'config').
    :param args: A list of arguments for the command.
    :param client: The API client for server-side commands. Built from settings when omitted.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    client = client or PanelClient()
    command_map = {
        "serve": lambda: _serve(args),
        "list": lambda: display_bots(client),
        "status": lambda: display_bots(client),
        "deploy": lambda: handle_deploy_command(client, args),
        "env": lambda: handle_env_command(client, args),
        "logs": lambda: handle_logs_command(args),
        "config": lambda: handle_config_command(args),
        "verbose": toggle_verbose_logging,
        "help": print_help,
        "exit": lambda: True,
    }

    if command in LIFECYCLE_COMMANDS:
        handle_bot_action(client, command, args)
        return False

    if command in command_map:
        return command_map[command]() is True

    log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
    return False
