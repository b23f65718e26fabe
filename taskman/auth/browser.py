"""Best-effort system browser launcher.

The login flow always surfaces the authorization URL as well, so a
launch failure is logged and otherwise ignored.
"""

from __future__ import annotations

import logging
import subprocess
import sys


logger = logging.getLogger("taskman.auth")


def browser_command(url: str, platform: str | None = None) -> list[str]:
    """Return the command line that opens ``url`` on ``platform``.

    Parameters
    ----------
    url : str
        The URL to open.
    platform : str, optional
        A ``sys.platform`` value; defaults to the running platform.

    Returns
    -------
    list of str
    """
    platform = platform or sys.platform
    if platform.startswith("win"):
        # The empty string is the window title consumed by ``start``.
        return ["cmd", "/c", "start", "", url]
    if platform == "darwin":
        return ["open", url]
    return ["xdg-open", url]


def open_browser(url: str, platform: str | None = None) -> bool:
    """Open ``url`` in a detached browser process.

    Parameters
    ----------
    url : str
        The authorization URL.
    platform : str, optional
        Override for ``sys.platform``.

    Returns
    -------
    bool
        True if the process was spawned. Never raises.
    """
    command = browser_command(url, platform)
    try:
        subprocess.Popen(  # noqa: S603
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=not (platform or sys.platform).startswith("win"),
        )
    except (OSError, ValueError) as exc:
        logger.debug("Could not launch browser with %s: %s", command[0], exc)
        return False
    return True
