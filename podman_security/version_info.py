"""
Version information for the Podman Security Baseline tool.
"""

__version__ = "1.0.0"
