"""
Stage catalog — the fixed ten-stage approval pipeline.

Pure, stateless lookup table.  Each stage names the single role whose
decision closes it; stage 8 (Implementation) is the boundary after which
progress reports are accepted.

Usage:
    from app.services import stage_catalog

    stage = stage_catalog.stage_at(4)           # StageDefinition(4, "Ethics Review", ...)
    stage_catalog.authorized_role(2)            # "RDD"
    stage_catalog.is_implementation_boundary(8) # True
"""

from __future__ import annotations

from dataclasses import dataclass

from app.core.exceptions import StageNotFoundError

# ── Roles ─────────────────────────────────────────────────────────────────────

ROLE_COLLEGE_COMMITTEE = "CollegeCommittee"
ROLE_RDD = "RDD"                    # Research & Development Division
ROLE_REVIEWER = "Reviewer"
ROLE_ETHICS_COMMITTEE = "EthicsCommittee"
ROLE_OVPRDE = "OVPRDE"              # Division Executive
ROLE_OP = "OP"                      # Office of the President
ROLE_OSUORU = "OSUORU"              # Oversight Unit
ROLE_CM = "CM"                      # Center Manager

IMPLEMENTATION_BOUNDARY = 8
FINAL_STAGE = 10


@dataclass(frozen=True)
class StageDefinition:
    ordinal: int
    name: str
    authorizing_role: str
    is_implementation_boundary: bool = False

    def to_dict(self) -> dict:
        return {
            "ordinal": self.ordinal,
            "name": self.name,
            "authorizing_role": self.authorizing_role,
            "is_implementation_boundary": self.is_implementation_boundary,
        }


STAGES: tuple[StageDefinition, ...] = (
    StageDefinition(1, "College Endorsement", ROLE_COLLEGE_COMMITTEE),
    StageDefinition(2, "R&D Division", ROLE_RDD),
    StageDefinition(3, "Proposal Review", ROLE_REVIEWER),
    StageDefinition(4, "Ethics Review", ROLE_ETHICS_COMMITTEE),
    StageDefinition(5, "OVPRDE", ROLE_OVPRDE),
    StageDefinition(6, "President", ROLE_OP),
    StageDefinition(7, "OSOURU", ROLE_OSUORU),
    StageDefinition(8, "Implementation", ROLE_CM, is_implementation_boundary=True),
    StageDefinition(9, "Monitoring", ROLE_RDD),
    StageDefinition(10, "For Completion", ROLE_RDD),
)

VALID_ROLES = frozenset(s.authorizing_role for s in STAGES)

_BY_ORDINAL = {s.ordinal: s for s in STAGES}


def _check_catalog(stages: tuple[StageDefinition, ...]) -> None:
    """Fail at import time if the table above is ever edited inconsistently."""
    ordinals = [s.ordinal for s in stages]
    if ordinals != list(range(1, len(stages) + 1)):
        raise RuntimeError(f"Stage ordinals must be contiguous from 1: {ordinals}")
    boundaries = [s.ordinal for s in stages if s.is_implementation_boundary]
    if boundaries != [IMPLEMENTATION_BOUNDARY]:
        raise RuntimeError(f"Exactly stage {IMPLEMENTATION_BOUNDARY} must be the implementation boundary")
    if stages[-1].ordinal != FINAL_STAGE:
        raise RuntimeError(f"Pipeline must end at stage {FINAL_STAGE}")


_check_catalog(STAGES)


def stage_at(ordinal: int) -> StageDefinition:
    """Return the stage definition, or raise StageNotFoundError."""
    try:
        return _BY_ORDINAL[ordinal]
    except (KeyError, TypeError):
        raise StageNotFoundError(ordinal) from None


def authorized_role(ordinal: int) -> str:
    return stage_at(ordinal).authorizing_role


def is_implementation_boundary(ordinal: int) -> bool:
    return stage_at(ordinal).is_implementation_boundary


def all_stages() -> tuple[StageDefinition, ...]:
    return STAGES


def stage_names() -> list[str]:
    return [s.name for s in STAGES]
