# ========================
# npiscore/pipeline/codes.py
# ========================

"""
Billing Code Groups

Evaluation-and-management levels and the care-management program bundles
tracked per provider and per specialty.
"""

from dataclasses import dataclass
from typing import FrozenSet, Tuple

EM_LEVELS: Tuple[str, ...] = ('99211', '99212', '99213', '99214', '99215')
EM_CODES: FrozenSet[str] = frozenset(EM_LEVELS)

# E&M levels that feed the specialty coding shares
BENCHMARK_EM_LEVELS: Tuple[str, ...] = ('99213', '99214', '99215')


@dataclass(frozen=True)
class ProgramGroup:
    """A named bundle of billing codes worth a fixed number of score points."""

    name: str
    codes: FrozenSet[str]
    points: int

    def contains(self, code: str) -> bool:
        return code in self.codes


PROGRAM_GROUPS: Tuple[ProgramGroup, ...] = (
    ProgramGroup('ccm', frozenset({'99490', '99439', '99491'}), 25),
    ProgramGroup('rpm', frozenset({'99453', '99454', '99457', '99458'}), 20),
    ProgramGroup('bhi', frozenset({'99484', '99492', '99493', '99494'}), 15),
    ProgramGroup('awv', frozenset({'G0438', 'G0439'}), 40),
)

PROGRAM_NAMES: Tuple[str, ...] = tuple(group.name for group in PROGRAM_GROUPS)


def program_for_code(code: str):
    """Return the ProgramGroup a code belongs to, or None."""
    for group in PROGRAM_GROUPS:
        if group.contains(code):
            return group
    return None
