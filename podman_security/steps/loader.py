"""
Step loader for the target configuration sequence.

Loads the apply steps from YAML definition files and checks that the
sequence is exactly the fixed baseline order.
"""

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from ..core.errors import PreconditionError
from ..core.models import ApplyStep


BASELINE_SEQUENCE = [
    "ssh_hardening",
    "repository_restriction",
    "registry_restriction",
    "rootless_mode",
    "target_firewall",
    "dns_pinning",
    "proxy_configuration",
    "maintenance_scripts",
]


class StepLoader:
    """
    Manages loading of apply step definitions.

    Steps come from ``baseline.yaml`` in the definitions directory and are
    cached after the first load.
    """

    def __init__(self, definitions_dir: Optional[str] = None):
        """
        Initialize step loader.

        Args:
            definitions_dir: Directory containing step YAML files (uses default if None)
        """
        if definitions_dir:
            self.definitions_dir = Path(definitions_dir)
        else:
            self.definitions_dir = Path(__file__).parent / "definitions"

        self._steps_cache: Optional[List[ApplyStep]] = None

    def get_steps(self) -> List[ApplyStep]:
        """
        Get the ordered apply steps.

        Returns:
            List[ApplyStep]: Steps in execution order

        Raises:
            PreconditionError: If the definitions are missing or malformed
        """
        if self._steps_cache is None:
            self._steps_cache = self._load_steps()
        return list(self._steps_cache)

    def get_step_by_id(self, step_id: str) -> Optional[ApplyStep]:
        for step in self.get_steps():
            if step.id == step_id:
                return step
        return None

    def _load_steps(self) -> List[ApplyStep]:
        definition = self.definitions_dir / "baseline.yaml"
        if not definition.exists():
            raise PreconditionError([f"Step definitions not found: {definition}"])

        try:
            with open(definition, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise PreconditionError([f"Invalid step definitions in {definition}: {e}"])

        try:
            steps = [ApplyStep(**item) for item in data.get("steps", [])]
        except (ValidationError, TypeError) as e:
            raise PreconditionError([f"Invalid step definition in {definition}: {e}"])

        ids = [step.id for step in steps]
        if ids != BASELINE_SEQUENCE:
            raise PreconditionError([
                f"Step sequence in {definition} must be {', '.join(BASELINE_SEQUENCE)}; got {', '.join(ids)}"
            ])
        return steps
