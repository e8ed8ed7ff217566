"""
Host identity and privilege utilities.
"""

import getpass
import os
import platform
import sys


def is_admin() -> bool:
    """
    Check if the current process has administrative privileges.

    Returns:
        bool: True if running with admin/root privileges, False otherwise.
    """
    if sys.platform == "win32":
        try:
            import ctypes
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        except (AttributeError, OSError):
            return False
    else:
        # Unix-like systems
        return os.geteuid() == 0


def is_windows() -> bool:
    return platform.system() == "Windows"


def host_identity() -> str:
    """Hostname recorded in bundle metadata."""
    return platform.node() or "unknown-host"


def current_user() -> str:
    """User name recorded as the creator of a bundle."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USERNAME") or os.environ.get("USER") or "unknown"
