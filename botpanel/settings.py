"""
This module contains the configuration settings for the BotPanel application.
It defines paths, supervisor behaviour, web server settings and logging options.
It is used throughout the application to ensure consistent settings and paths.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent  # Project Root
PACKAGE_DIR = BASE_DIR / "botpanel"
DATA_DIR = pathlib.Path(os.getenv("BOTPANEL_DATA_DIR", str(pathlib.Path.cwd() / "data")))
BOTS_DIR = DATA_DIR / "bots"
LOGS_DIR = DATA_DIR / "logs"

#* --- Application File Paths ---
TEMPLATES_DIR = PACKAGE_DIR / "web" / "templates"
REGISTRY_PATH = DATA_DIR / "registry.json"
LOG_DB_PATH = LOGS_DIR / "app_logs.db"
OVERRIDES_JSON_PATH = DATA_DIR / "overrides.json"

#* --- Bot Runtime ---
# Command used to launch a bot's entrypoint, e.g. "node index.js".
BOT_RUNTIME = os.getenv("BOT_RUNTIME", "node")
INSTALL_COMMAND = os.getenv("BOT_INSTALL_COMMAND", "npm install")
MANIFEST_FILE = "package.json"
ENTRYPOINT_CANDIDATES = ("index.js", "bot.js")
ARCHIVE_SUFFIX = ".zip"

#* --- Supervisor Settings ---
RESTART_QUIESCENCE_SECONDS = 1.0   # pause between observed exit and re-launch
DEPLOY_STOP_TIMEOUT = 10           # seconds to wait for a running bot to exit before redeploying
GRACEFUL_SHUTDOWN_TIMEOUT = 10     # seconds before force-killing on server exit
PIPE_DRAIN_TIMEOUT = 2             # seconds to wait for output readers after exit

#* --- Web Server Settings ---
WEB_SERVER_HOST = os.getenv("BOTPANEL_HOST", "127.0.0.1")
WEB_SERVER_PORT = int(os.getenv("BOTPANEL_PORT", "3000"))
MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "100"))
OBSERVER_QUEUE_SIZE = 1000
WELCOME_MESSAGE = "Welcome to your Bot Panel! Upload a .zip file to begin."
PROCESS_TITLE = "BotPanel - Server"

#* --- Grafana Loki (optional log shipping) ---
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- Application variables ---
VERBOSE_LOGGING = False

#* --- MODIFIABLE SETTINGS (Changeable via the 'config set' command) ---
MODIFIABLE_SETTINGS = {
    # Supervisor
    "RESTART_QUIESCENCE_SECONDS", "DEPLOY_STOP_TIMEOUT", "GRACEFUL_SHUTDOWN_TIMEOUT",
    # Uploads
    "MAX_UPLOAD_SIZE_MB",
    # Logging
    "LOG_BUFFER_SIZE", "LOG_BUFFER_FLUSH_INTERVAL", "LOG_HISTORY_COUNT",
}

#* --- Default Values for Modifiable Settings ---
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 5
LOG_HISTORY_COUNT = 50
