"""
Platform factory for creating target executors and the host handler.
"""

from typing import Dict, Type

from ..core.models import RunConfiguration
from .base import BaseExecutor
from .windows import WindowsHost
from .wsl import WslExecutor


class PlatformFactory:
    """
    Factory class for creating executors.

    Provides a centralized way to get the executor for a target kind and
    the host handler, both configured from the run configuration.
    """

    _executors: Dict[str, Type[BaseExecutor]] = {
        "wsl": WslExecutor,
    }

    @classmethod
    def get_executor(cls, config: RunConfiguration, kind: str = "wsl") -> BaseExecutor:
        """
        Get the executor for the configured target.

        Args:
            config: Run configuration
            kind: Executor kind

        Returns:
            BaseExecutor: Executor bound to the target environment

        Raises:
            ValueError: If the kind is not registered
        """
        if kind not in cls._executors:
            raise ValueError(f"Unsupported executor: {kind}")

        return cls._executors[kind](config.distro, timeout=config.command_timeout)

    @classmethod
    def get_host(cls, config: RunConfiguration) -> WindowsHost:
        return WindowsHost(timeout=config.command_timeout)
