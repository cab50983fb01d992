import sys
import shlex
import logging
import threading

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by the full setup later.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import botpanel.local.console as console
from botpanel.log.setup import setup_logging
from botpanel.local.config import effective_settings as config

CONSOLE_LOCK = threading.Lock()


def main() -> None:
    """The main entry point for the bot panel console."""
    setup_logging(logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO)

    # Non-interactive mode for one-off commands
    if len(sys.argv) > 1:
        command, args = sys.argv[1].lower(), sys.argv[2:]
        if "--verbose" in args:
            console.toggle_verbose_logging()
            args.remove("--verbose")

        console.execute_command(command, args)
        return

    # Interactive mode
    print("--- Bot Panel Management Console ---")
    print("Type 'help' for a list of commands, 'serve' to run the panel server.")

    while True:
        try:
            # The input prompt must be outside the lock to not block background threads
            command_line_str = input("> ")
            with CONSOLE_LOCK:
                if not command_line_str.strip():
                    continue
                try:
                    command_line = shlex.split(command_line_str)
                except ValueError as e:
                    print(f"Could not parse command: {e}")
                    continue

                command, args = command_line[0].lower(), command_line[1:]
                log.debug(f"Received command: {command}, args: {args}")

                if console.execute_command(command, args):
                    break

        except (KeyboardInterrupt, EOFError):
            with CONSOLE_LOCK:
                log.warning("\nExiting console due to KeyboardInterrupt.")
                break
        except Exception as e:
            with CONSOLE_LOCK:
                log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)

    print("Exiting bot panel console. See you next time!")


if __name__ == "__main__":
    main()
