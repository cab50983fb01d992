import io
import json
import shutil
import logging
import zipfile
import zlib
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

from botpanel.local.config import effective_settings as config
from botpanel.local.errors import (BAD_ARCHIVE_FORMAT, BUSY_INSTALLING, BUSY_RUNNING, EXTRACTION_FAILED,
                                   FILESYSTEM_ERROR, BotPanelError, ConflictError, InvalidInputError, IOFailureError)

if TYPE_CHECKING:
    from .supervisor import BotSupervisor

log = logging.getLogger(__name__)

INVALID_NAME = "InvalidName"
MACOS_METADATA_DIR = "__MACOSX"


#* --- Names ---
def validate_bot_name(name: str) -> str:
    """
    Checks that a bot name can safely be used as a directory name.

    :return: The name, unchanged.
    :raises InvalidInputError: For empty names, path separators or leading dots.
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidInputError(INVALID_NAME, None, "A bot name is required.")
    if "/" in name or "\\" in name or "\0" in name or name.startswith("."):
        raise InvalidInputError(INVALID_NAME, name, f"'{name}' is not a valid bot name.")
    return name


def bot_name_from_filename(filename: str) -> str:
    """
    Derives the bot name from an uploaded archive's file name ('echo-bot.zip' -> 'echo-bot').

    :raises InvalidInputError: BadArchiveFormat if the file is not a .zip.
    """
    base_name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    if not base_name.lower().endswith(config.ARCHIVE_SUFFIX):
        raise InvalidInputError(BAD_ARCHIVE_FORMAT, None, f"Only {config.ARCHIVE_SUFFIX} files are allowed.")
    return validate_bot_name(base_name[:-len(config.ARCHIVE_SUFFIX)])


#* --- Entrypoint ---
def _is_inside(root: Path, candidate: Path) -> bool:
    try:
        return candidate.resolve().is_relative_to(root.resolve())
    except (OSError, ValueError):
        return False


def resolve_entrypoint(working_dir: Path, manifest_file: str, candidates: Sequence[str]) -> Optional[str]:
    """
    Finds the file a bot is launched with.

    A manifest with a string "main" field wins. Otherwise the conventional
    candidate names are probed in order.

    :return: The entrypoint relative to `working_dir`, or None when unresolved.
    """
    manifest_path = working_dir / manifest_file
    if manifest_path.is_file():
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            log.warning(f"Invalid {manifest_file} in '{working_dir.name}': {e}")
        else:
            main = manifest.get("main") if isinstance(manifest, dict) else None
            if isinstance(main, str) and main.strip():
                if _is_inside(working_dir, working_dir / main):
                    return main
                log.warning(f"Ignoring 'main' of '{working_dir.name}': '{main}' points outside the bot folder.")

    for candidate in candidates:
        if (working_dir / candidate).is_file():
            return candidate
    return None


#* --- Extraction ---
def _open_archive(name: str, archive_bytes: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(archive_bytes))
    except zipfile.BadZipFile as e:
        raise InvalidInputError(BAD_ARCHIVE_FORMAT, name, f"Uploaded file is not a valid zip archive: {e}") from e


def _replace_directory(working_dir: Path) -> None:
    """Removes any previous deployment and creates an empty working directory."""
    if working_dir.exists():
        shutil.rmtree(working_dir)
    working_dir.mkdir(parents=True)


def _extract(archive: zipfile.ZipFile, working_dir: Path, name: str) -> None:
    for member in archive.infolist():
        if not _is_inside(working_dir, working_dir / member.filename):
            raise IOFailureError(EXTRACTION_FAILED, name, f"Archive entry '{member.filename}' escapes the bot folder.")
    try:
        archive.extractall(working_dir)
    except (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, NotImplementedError, OSError) as e:
        raise IOFailureError(EXTRACTION_FAILED, name, f"Could not extract archive: {e}") from e


def flatten_single_directory(working_dir: Path) -> bool:
    """
    Promotes the contents of a lone top-level directory one level up.

    Runs once; a wrapper nested inside the wrapper is left alone.

    :return: True if the directory was flattened.
    """
    metadata_dir = working_dir / MACOS_METADATA_DIR
    if metadata_dir.is_dir():
        shutil.rmtree(metadata_dir)

    entries = list(working_dir.iterdir())
    if len(entries) != 1 or not entries[0].is_dir() or entries[0].is_symlink():
        return False

    # Renamed first so a child with the wrapper's own name cannot collide.
    wrapper = entries[0].rename(working_dir / f".{entries[0].name}.flatten")
    for child in wrapper.iterdir():
        child.rename(working_dir / child.name)
    wrapper.rmdir()
    log.debug(f"Flattened wrapper directory '{entries[0].name}' in '{working_dir.name}'.")
    return True


#* --- Deploy ---
def deploy_archive(manager: "BotSupervisor", archive_bytes: bytes, filename: str) -> str:
    """
    Unpacks an uploaded archive into a fresh working directory and registers the bot.

    A running bot of the same name is stopped first (upgrade in place).
    Environment overrides of an existing bot are kept.

    :param manager: The supervisor that owns the bot.
    :param archive_bytes: The raw uploaded archive.
    :param filename: The uploaded file name; its base name becomes the bot name.
    :return: The bot name.
    """
    name = bot_name_from_filename(filename)
    with _open_archive(name, archive_bytes) as archive:
        if not manager.stop_and_wait(name, manager.deploy_stop_timeout):
            raise ConflictError(
                BUSY_RUNNING, name, f"Bot did not stop within {manager.deploy_stop_timeout}s. Stop it and retry."
            )

        with manager.exclusive(name) as cell:
            if cell.instance is not None:
                raise ConflictError(BUSY_RUNNING, name, "Bot was started again during the upload.")
            if cell.install_process is not None:
                raise ConflictError(BUSY_INSTALLING, name, "Dependencies are being installed. Try again when done.")
            manager.cancel_pending_restart(cell)

            working_dir = manager.working_dir(name)
            try:
                _replace_directory(working_dir)
                _extract(archive, working_dir, name)
                flatten_single_directory(working_dir)
            except BotPanelError as e:
                manager.broadcaster.publish(name, f"--- Error uploading {name}: {e.detail} ---", True)
                raise
            except OSError as e:
                log.error(f"Filesystem error while deploying '{name}': {e}", exc_info=True)
                manager.broadcaster.publish(name, f"--- Error uploading {name}: {e} ---", True)
                raise IOFailureError(FILESYSTEM_ERROR, name, f"Error processing upload: {e}") from e

            manager.registry.register(name)

    log.info(f"Bot '{name}' deployed to '{working_dir}'.")
    manager.broadcaster.publish(name, f"--- {name} uploaded and extracted successfully. ---")
    manager.broadcaster.notify_registry_changed()
    return name
