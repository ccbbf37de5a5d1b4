from enum import Enum
from typing import Optional

from funnelchat.services.funnel_graph import FunnelGraph


class Phase(str, Enum):
    PHASE1 = "PHASE1"
    PHASE2 = "PHASE2"
    TRANSITION = "TRANSITION"
    COMPLETED = "COMPLETED"


class StageRole(str, Enum):
    WELCOME = "WELCOME"
    VALUE_DELIVERY = "VALUE_DELIVERY"
    TRANSITION = "TRANSITION"
    EXPERIENCE_QUALIFICATION = "EXPERIENCE_QUALIFICATION"
    PAIN_POINT_QUALIFICATION = "PAIN_POINT_QUALIFICATION"
    OFFER = "OFFER"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "StageRole":
        if not name:
            return cls.UNRECOGNIZED
        try:
            return cls(name)
        except ValueError:
            return cls.UNRECOGNIZED


STAGE_PHASES = {
    StageRole.WELCOME: Phase.PHASE1,
    StageRole.VALUE_DELIVERY: Phase.PHASE2,
}


def stage_role(block_id: Optional[str], graph: FunnelGraph) -> StageRole:
    stage = graph.stage_of(block_id)
    return StageRole.from_name(stage.name if stage else None)


def classify_phase(block_id: Optional[str], graph: FunnelGraph) -> Phase:
    """Phase of block_id. Unknown, unstaged and unrecognized stages are COMPLETED."""
    return STAGE_PHASES.get(stage_role(block_id, graph), Phase.COMPLETED)


def is_phase2_entry(from_phase: Phase, to_phase: Phase) -> bool:
    return from_phase == Phase.PHASE1 and to_phase == Phase.PHASE2
