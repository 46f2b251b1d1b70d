"""Candidate and score vector data structures for GEPA optimization."""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..program import InstructionProgram, get_instructions, instruction_slot_names, with_instructions

OBJECTIVES = ("primary_score", "token_efficiency", "consistency", "latency")


@dataclass(frozen=True)
class ScoreVector:
    """Multi-dimensional fitness of one candidate; every field is higher-is-better."""
    primary_score: float = 0.0
    fitness_score: float = 0.0
    token_efficiency: float = 0.0
    consistency: float = 0.0
    latency: float = 0.0
    failed_examples: int = 0
    total_examples: int = 0
    error: Optional[str] = None

    @classmethod
    def worst(cls, error: Optional[str] = None, total_examples: int = 0) -> 'ScoreVector':
        return cls(failed_examples=total_examples, total_examples=total_examples, error=error)

    def objectives(self) -> Tuple[float, ...]:
        """The four dimensions Pareto dominance is computed on."""
        return tuple(getattr(self, name) for name in OBJECTIVES)

    def dominates(self, other: 'ScoreVector') -> bool:
        """True if at least as good on every objective and strictly better on one."""
        strictly_better_on_one = False
        for mine, theirs in zip(self.objectives(), other.objectives()):
            if mine < theirs:
                return False
            if mine > theirs:
                strictly_better_on_one = True
        return strictly_better_on_one

    @property
    def failure_rate(self) -> float:
        return self.failed_examples / self.total_examples if self.total_examples else 0.0

    @property
    def has_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, float]:
        return {
            "primary_score": self.primary_score,
            "fitness_score": self.fitness_score,
            "token_efficiency": self.token_efficiency,
            "consistency": self.consistency,
            "latency": self.latency,
        }


def new_candidate_id() -> str:
    return f"cand-{uuid.uuid4().hex[:12]}"


@dataclass
class Candidate:
    """An instruction-set variant of the program being optimized.

    The candidate does not hold a module: ``build`` applies its instructions to
    the baseline program on demand. Lineage is kept as parent ids.
    """
    instructions: List[str]
    slot_names: List[str] = field(default_factory=list)
    generation: int = 0
    parent_ids: List[str] = field(default_factory=list)
    scores: Optional[ScoreVector] = None
    validation_score: Optional[float] = None
    creation_metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_candidate_id)

    def __hash__(self) -> int:
        """Make candidates hashable based on object identity."""
        return hash(id(self))

    def __eq__(self, other: object) -> bool:
        """Compare candidates by object identity."""
        if not isinstance(other, Candidate):
            return False
        return self is other

    @classmethod
    def from_program(cls, program: InstructionProgram, generation: int = 0) -> 'Candidate':
        """Baseline candidate carrying the program's current instructions."""
        return cls(
            instructions=get_instructions(program),
            slot_names=instruction_slot_names(program),
            generation=generation,
            creation_metadata={"operator": "baseline"},
        )

    def derive(self, instructions: List[str], generation: int,
               parent_ids: Optional[List[str]] = None, **metadata) -> 'Candidate':
        """New unscored candidate in this candidate's slot layout."""
        return Candidate(
            instructions=list(instructions),
            slot_names=list(self.slot_names),
            generation=generation,
            parent_ids=list(parent_ids) if parent_ids is not None else [self.id],
            creation_metadata=dict(metadata),
        )

    def clone(self, generation: int, **metadata) -> 'Candidate':
        metadata.setdefault("operator", "clone")
        return self.derive(self.instructions, generation, [self.id], **metadata)

    def build(self, student: InstructionProgram):
        """Return a copy of ``student`` running this candidate's instructions."""
        return with_instructions(student, self.instructions)

    def slot_name(self, index: int) -> str:
        return self.slot_names[index] if index < len(self.slot_names) else f"slot_{index}"

    def is_scored(self) -> bool:
        return self.scores is not None

    @property
    def fitness(self) -> float:
        return self.scores.fitness_score if self.scores else 0.0

    @property
    def primary_score(self) -> float:
        return self.scores.primary_score if self.scores else 0.0

    def dominates(self, other: 'Candidate') -> bool:
        if self.scores is None:
            return False
        if other.scores is None:
            return True
        return self.scores.dominates(other.scores)

    def instruction_key(self) -> Tuple[str, ...]:
        return tuple(self.instructions)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "generation": self.generation,
            "lineage": list(self.parent_ids),
            "instructions": dict(zip(
                [self.slot_name(i) for i in range(len(self.instructions))], self.instructions
            )),
            "validation_score": self.validation_score,
            "operator": self.creation_metadata.get("operator"),
        }
