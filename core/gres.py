# ============================================================================
# GENERIC RESOURCE PARSER
# ============================================================================
# STATUS: Core - sbatch --gres value parsing
# PURPOSE: Validate gres requests and detect GPU requests
# CREATED: 05 MAR 2026
# ============================================================================
"""
Generic Resource (gres) Parser

Parses the value of an sbatch ``--gres`` argument: a comma-delimited list
of ``name[[:type]:count]`` entries, e.g. ``gpu:2``, ``gpu:a100:2``,
``foo,bar:1G``.

Count suffixes k/m/g/t/p (any case) multiply by powers of 1024.

See https://slurm.schedmd.com/sbatch.html#OPT_gres
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class CountUnit(Enum):
    """Binary multipliers accepted after a gres count."""
    K = 1024
    M = 1024 ** 2
    G = 1024 ** 3
    T = 1024 ** 4
    P = 1024 ** 5

    @classmethod
    def parse(cls, text: str) -> Optional["CountUnit"]:
        if text == "":
            return None
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"unrecognized gres count unit: {text}") from None


@dataclass(frozen=True)
class GresCount:
    value: int
    unit: Optional[CountUnit] = None

    @classmethod
    def parse(cls, text: str) -> "GresCount":
        digits = ""
        for char in text:
            if not char.isdigit():
                break
            digits += char
        if not digits:
            raise ValueError(f"unrecognized gres count: {text}")
        return cls(int(digits), CountUnit.parse(text[len(digits):]))

    def expand(self) -> int:
        """Count with the unit multiplier applied."""
        return self.value * (self.unit.value if self.unit is not None else 1)


@dataclass(frozen=True)
class Gres:
    name: str
    count: Optional[GresCount] = None
    type: Optional[str] = None

    @property
    def is_gpu(self) -> bool:
        return self.name == "gpu"

    @classmethod
    def parse(cls, text: str) -> Optional["Gres"]:
        """Parse one entry, or return None if it has too many parts."""
        parts = text.split(":")
        if len(parts) == 1:
            return cls(parts[0])
        if len(parts) == 2:
            return cls(parts[0], GresCount.parse(parts[1]))
        if len(parts) == 3:
            return cls(parts[0], GresCount.parse(parts[2]), parts[1])
        return None

    @classmethod
    def parse_all(cls, text: str) -> List["Gres"]:
        """
        Parse a full --gres value.

        Raises:
            ValueError: If any entry is unrecognizable
        """
        parts = text.replace(" ", ",").split(",")
        if len(parts) == 1:
            gres = cls.parse(parts[0])
            if gres is None:
                raise ValueError(f"--gres value unrecognizable: {parts[0]}")
            return [gres]

        result = []
        for part in parts:
            gres = cls.parse(part)
            if gres is None:
                raise ValueError(f"--gres element unrecognizable: {part} in {text}")
            result.append(gres)
        return result


def requested_gpus(gres_value: str) -> Optional[int]:
    """Number of GPUs requested by a --gres value, if any GPU entry exists."""
    for gres in Gres.parse_all(gres_value):
        if gres.is_gpu:
            return gres.count.expand() if gres.count is not None else 1
    return None


__all__ = ["CountUnit", "GresCount", "Gres", "requested_gpus"]
