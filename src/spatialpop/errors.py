"""
Error types raised by the synthesis core.

All errors subclass ``SynthesisError`` (itself a ``ValueError``) and carry
the offending identifiers as attributes so the caller can report them.
"""

from typing import Any, List, Optional, Sequence


class SynthesisError(ValueError):
    """Base class for unrecoverable synthesis errors."""


def _preview(ids: Sequence[Any], limit: int = 5) -> str:
    ids = list(ids)
    shown = ", ".join(str(i) for i in ids[:limit])
    if len(ids) > limit:
        shown += f", ... ({len(ids)} total)"
    return shown


class SchemaMismatch(SynthesisError):
    """Individual and zone tables disagree with the attribute schema."""

    def __init__(
        self,
        message: str,
        group: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
        ids: Optional[Sequence[Any]] = None,
    ):
        self.group = group
        self.columns: List[str] = list(columns) if columns is not None else []
        self.ids: List[Any] = list(ids) if ids is not None else []
        details = []
        if group is not None:
            details.append(f"group={group!r}")
        if self.columns:
            details.append(f"columns=[{_preview(self.columns)}]")
        if self.ids:
            details.append(f"ids=[{_preview(self.ids)}]")
        if details:
            message = f"{message} ({'; '.join(details)})"
        super().__init__(message)


class DegenerateMarginal(SynthesisError):
    """A ratio's denominator is exactly zero."""

    def __init__(
        self,
        message: str,
        group: Optional[str] = None,
        category: Optional[str] = None,
        zone_ids: Optional[Sequence[Any]] = None,
    ):
        self.group = group
        self.category = category
        self.zone_ids: List[Any] = list(zone_ids) if zone_ids is not None else []
        details = []
        if group is not None:
            details.append(f"group={group!r}")
        if category is not None:
            details.append(f"category={category!r}")
        if self.zone_ids:
            details.append(f"zones=[{_preview(self.zone_ids)}]")
        if details:
            message = f"{message} ({'; '.join(details)})"
        super().__init__(message)


class IntegerizationDeficit(SynthesisError):
    """TRS needs more top-ups than there are nonzero remainders."""

    def __init__(self, zone_id: Any, deficit: int, eligible: int):
        self.zone_id = zone_id
        self.deficit = deficit
        self.eligible = eligible
        super().__init__(
            f"Zone {zone_id!r} needs {deficit} top-ups but only {eligible} "
            "individuals have a nonzero fractional remainder"
        )


class NegativeOrFractionalCount(SynthesisError):
    """Expansion received a count that is not a non-negative integer."""

    def __init__(self, zone_id: Any, individual_id: Any, value: Any):
        self.zone_id = zone_id
        self.individual_id = individual_id
        self.value = value
        super().__init__(
            f"Invalid count {value!r} for individual {individual_id!r} "
            f"in zone {zone_id!r}; counts must be non-negative integers"
        )
