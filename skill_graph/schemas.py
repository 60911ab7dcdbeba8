# skill_graph/schemas.py
from typing import Dict, FrozenSet, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, Field

Tier = Literal["foundational", "core", "applied", "advanced"]
RelationKind = Literal["requires", "builds_on", "extends"]
Independence = Literal["Unknown", "Independent", "Lightly Scaffolded", "Heavily Assisted"]
Retention = Literal["Unknown", "Current", "Aging", "Expired"]

TIER_ORDER: Tuple[str, ...] = ("foundational", "core", "applied", "advanced")
RELATION_KINDS: Tuple[str, ...] = ("requires", "builds_on", "extends")
DEFAULT_TIER = "core"
DEFAULT_RELATION = "requires"

DEFAULT_LEVEL_LABELS: Tuple[str, ...] = (
    "Recognition",
    "Recall (simple)",
    "Recall (complex)",
    "Direct application",
)


class MasteryEvidence(BaseModel):
    measured: bool = False
    highest_concept_level: int = Field(ge=0, le=7, default=0)
    level_labels: List[str] = Field(default_factory=lambda: list(DEFAULT_LEVEL_LABELS))
    independence: Independence = "Unknown"
    retention: Retention = "Unknown"
    evidence_by_level: Dict[int, float] = {}


class EffortEstimate(BaseModel):
    estimated: bool = True
    estimated_minutes: float = Field(ge=0, default=15)
    measured_minutes: Optional[float] = None


class SkillNode(BaseModel):
    id: str
    name: str
    tier: Tier = DEFAULT_TIER
    level: int = Field(ge=0, default=0)
    description: str = ""
    contexts: List[str] = []
    required_by: List[str] = []   # question texts, in first-seen order
    mastery: MasteryEvidence = Field(default_factory=MasteryEvidence)
    effort: EffortEstimate = Field(default_factory=EffortEstimate)


class PrereqEdge(BaseModel):
    source: str   # prerequisite skill
    target: str   # dependent skill
    reason: str = ""
    relation: RelationKind = DEFAULT_RELATION

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source, self.target)

    @property
    def undirected_key(self) -> FrozenSet[str]:
        return frozenset((self.source, self.target))


class SkillGraph(BaseModel):
    nodes: List[SkillNode] = []
    edges: List[PrereqEdge] = []
    questions: Dict[str, List[str]] = {}

    def node_ids(self) -> Set[str]:
        return {n.id for n in self.nodes}

    def node_map(self) -> Dict[str, SkillNode]:
        return {n.id: n for n in self.nodes}

    def is_empty(self) -> bool:
        return not self.nodes and not self.edges and not self.questions


# A fragment has exactly the shape of a merged graph, so a merged graph can be
# fed back in as a fragment.
Fragment = SkillGraph
