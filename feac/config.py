"""feac/config.py – compilation options."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from feac.errors import ConfigError, Severity

__all__ = ["AxisInfo", "CompileOptions"]


@dataclass(frozen=True)
class AxisInfo:
    """User-space range of a variation axis."""

    minimum: float
    default: float
    maximum: float

    @property
    def triple(self):
        return (self.minimum, self.default, self.maximum)


@dataclass
class CompileOptions:
    """Tuning knobs for one compilation."""
    duplicate_definition_severity: Severity = Severity.WARNING
    max_include_depth: int = 50
    max_class_depth: int = 64
    axes: Mapping[str, AxisInfo] = field(default_factory=dict)
    infer_gdef_classes: bool = True
    deduplicate_subtables: bool = True
    first_name_id: int = 256

    def validate(self) -> List[str]:
        """Return a list of problems (empty if valid)."""
        problems: List[str] = []
        if not isinstance(self.duplicate_definition_severity, Severity):
            problems.append("duplicate_definition_severity must be a Severity")
        if self.max_include_depth <= 0:
            problems.append("max_include_depth must be positive")
        if self.max_class_depth <= 0:
            problems.append("max_class_depth must be positive")
        if not 256 <= self.first_name_id <= 32767:
            problems.append("first_name_id must be between 256 and 32767")
        for tag, axis in self.axes.items():
            if len(tag) > 4:
                problems.append(f"axis tag {tag!r} is longer than four characters")
            if not axis.minimum <= axis.default <= axis.maximum:
                problems.append(f"axis {tag!r}: default must lie between minimum and maximum")
        return problems

    def check(self) -> None:
        """Raise :class:`ConfigError` if :meth:`validate` finds problems."""
        problems = self.validate()
        if problems:
            raise ConfigError(problems)

    @classmethod
    def from_axes(cls, axes: Mapping[str, tuple], **kwargs) -> "CompileOptions":
        """Options with axes given as ``{tag: (min, default, max)}``."""
        parsed: Dict[str, AxisInfo] = {tag: AxisInfo(*triple) for tag, triple in axes.items()}
        return cls(axes=parsed, **kwargs)
