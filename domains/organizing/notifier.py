"""Desktop notifications for completed moves. Delivery is best effort."""

import platform
import shutil
import subprocess
from typing import Protocol

from loguru import logger


class Notifier(Protocol):
    def notify(self, title: str, body: str) -> None:
        ...


class LogNotifier:
    """Notifier that only writes to the log."""

    def notify(self, title: str, body: str) -> None:
        logger.info(f"{title}: {body}")


class DesktopNotifier:
    """Shows notifications with notify-send (Linux) or osascript (macOS)."""

    def __init__(self, app_name: str = "Folder Sorter"):
        self.app_name = app_name

    def notify(self, title: str, body: str) -> None:
        command = self._command(title, body)
        if command is None:
            logger.debug(f"No notification tool available, skipping: {title}")
            return

        try:
            subprocess.run(command, check=True, capture_output=True, timeout=10)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Failed to send notification: {e}")

    def _command(self, title: str, body: str):
        system = platform.system()

        if system == "Darwin" and shutil.which("osascript"):
            script = (
                f"display notification {_applescript_string(body)} "
                f"with title {_applescript_string(title)} "
                f"subtitle {_applescript_string(self.app_name)}"
            )
            return ["osascript", "-e", script]

        if shutil.which("notify-send"):
            return ["notify-send", "--app-name", self.app_name, title, body]

        return None


def _applescript_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
