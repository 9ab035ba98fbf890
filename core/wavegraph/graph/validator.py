"""Output validation for node results.

Checks what an operation returned before it is allowed anywhere near the
run state.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from wavegraph.graph.node import NodeSpec


@dataclass
class ValidationResult:
    """Result of validating a node's output."""

    success: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def error(self) -> str:
        """Get combined error message."""
        return "; ".join(self.errors) if self.errors else ""


class OutputValidator:
    """
    Validates node outputs.

    Errors (the output cannot be merged) fail the attempt. Warnings
    (declared output keys that were not produced) are only logged.
    """

    def validate_output(self, node: NodeSpec, output: Any) -> ValidationResult:
        if output is None:
            output = {}

        if not isinstance(output, Mapping):
            return ValidationResult(
                success=False,
                errors=[f"Output is not a mapping, got {type(output).__name__}"],
            )

        errors = [
            f"Output key {key!r} is not a string" for key in output if not isinstance(key, str)
        ]

        warnings = self.validate_output_keys(output, node.output_keys)

        return ValidationResult(success=not errors, errors=errors, warnings=warnings)

    def validate_output_keys(
        self,
        output: Mapping[str, Any],
        expected_keys: list[str],
    ) -> list[str]:
        """Return a warning for each declared key missing from ``output``."""
        return [
            f"Missing declared output key: '{key}'" for key in expected_keys if key not in output
        ]
