"""
Resource finder for bundled templates.
Locates template files at runtime for installed, source and PyInstaller layouts.
"""

import sys
from pathlib import Path
from typing import Optional


def get_bundle_dir() -> Path:
    """Get the directory containing bundled resources."""
    if hasattr(sys, '_MEIPASS'):
        # Running as PyInstaller bundle
        return Path(sys._MEIPASS) / 'podman_security'
    else:
        # Running from an installed or source tree package
        return Path(__file__).parent


def find_templates_directory(override: Optional[Path] = None) -> Optional[Path]:
    """
    Find the templates directory.

    An operator-supplied directory wins over the bundled templates.
    """
    if override is not None:
        override = Path(override)
        return override if override.is_dir() else None

    templates_dir = get_bundle_dir() / 'templates'
    if templates_dir.is_dir():
        return templates_dir

    # Try current working directory
    templates_dir = Path.cwd() / 'templates'
    if templates_dir.is_dir():
        return templates_dir

    return None
