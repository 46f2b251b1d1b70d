"""Reflection-guided instruction mutation."""

import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import dspy

from ..config import GEPAConfig, MutationType
from ..data.candidate import Candidate
from ..data.reflection import ReflectionResult

logger = logging.getLogger(__name__)

_TARGETED = re.compile(r"^\s*(?:slot\s*)?\[?([\w.\-]+)\]?\s*:\s*(.+?)\s*$", re.IGNORECASE | re.DOTALL)

_EMPHASIS = ("Carefully {lower}", "Please {lower}", "{instruction} Be precise.")
_EXPANSIONS = (
    "Think step by step.",
    "Explain the reasoning behind the answer.",
    "Consider every part of the input before answering.",
)
_STRATEGIES = (
    "Break the problem into smaller parts.",
    "Check the answer against the question before responding.",
    "Use relevant domain knowledge.",
    "Watch for edge cases.",
)
_FILLER = re.compile(r"\b(carefully|detailed|comprehensive|thorough|thoroughly)\b", re.IGNORECASE)
_SYNONYMS = {
    "solve": "resolve",
    "answer": "respond to",
    "analyze": "examine",
    "calculate": "compute",
    "determine": "identify",
}


@dataclass
class SlotSuggestion:
    slot: Optional[int]
    instruction: Optional[str] = None
    mutation_type: Optional[MutationType] = None


def parse_suggestions(suggestions: Sequence[str], slot_names: Sequence[str]) -> List[SlotSuggestion]:
    """Split suggested mutations into targeted rewrites and operator keywords.

    Entries naming an unknown slot are dropped.
    """
    parsed = []
    for entry in suggestions:
        mutation_type = MutationType.parse(entry)
        if mutation_type is not None:
            parsed.append(SlotSuggestion(slot=None, mutation_type=mutation_type))
            continue

        match = _TARGETED.match(str(entry))
        if not match:
            continue
        target, instruction = match.group(1), match.group(2)
        if target in slot_names:
            parsed.append(SlotSuggestion(slot=list(slot_names).index(target), instruction=instruction))
        elif target.isdigit() and int(target) < max(len(slot_names), 1):
            parsed.append(SlotSuggestion(slot=int(target), instruction=instruction))
    return parsed


def apply_mutation_type(instruction: str, mutation_type: MutationType, rng=random) -> str:
    """Deterministic text operator (given the rng state)."""
    if mutation_type is MutationType.REWRITE:
        template = rng.choice(_EMPHASIS)
        lower = instruction[:1].lower() + instruction[1:]
        return template.format(instruction=instruction, lower=lower)
    if mutation_type is MutationType.EXPAND:
        return f"{instruction} {rng.choice(_EXPANSIONS)}".strip()
    if mutation_type is MutationType.SIMPLIFY:
        simplified = re.sub(r"\s+", " ", _FILLER.sub("", instruction)).strip()
        return simplified or instruction
    if mutation_type is MutationType.COMBINE:
        return f"{instruction} {rng.choice(_STRATEGIES)}".strip()
    if mutation_type is MutationType.REPHRASE:
        result = instruction
        for word, replacement in _SYNONYMS.items():
            result = re.sub(rf"\b{word}\b", replacement, result, flags=re.IGNORECASE)
        return result
    raise ValueError(f"Unknown mutation type: {mutation_type}")


class InstructionParaphraseSignature(dspy.Signature):
    """Rewrite an instruction for a language-model task so that it addresses the diagnosed
    problems while keeping the task itself unchanged."""

    current_instruction: str = dspy.InputField(desc="The instruction currently given to the model")
    diagnosis: str = dspy.InputField(desc="Analysis of how the program has been behaving")
    improvements: str = dspy.InputField(desc="Suggested improvements, one per line")
    improved_instruction: str = dspy.OutputField(desc="The rewritten instruction, and nothing else")


class InstructionProposer:
    """Paraphrases one instruction with the reflection model."""

    def __init__(self, reflection_lm: Optional[Any] = None):
        self.reflection_lm = reflection_lm
        self.paraphraser = dspy.Predict(InstructionParaphraseSignature)

    def propose(self, instruction: str, reflection: ReflectionResult) -> str:
        with dspy.context(lm=self.reflection_lm) if self.reflection_lm else dspy.context():
            result = self.paraphraser(
                current_instruction=instruction,
                diagnosis=reflection.diagnosis,
                improvements="\n".join(reflection.improvements) or "None",
            )
        improved = str(result.improved_instruction or "").strip()
        if not improved:
            raise ValueError("reflection model returned an empty instruction")
        return improved


class MutationEngine:
    """Rewrites instruction slots of a candidate, guided by reflection output.

    Each slot mutates independently with probability ``mutation_rate``. A
    targeted suggestion for the slot wins; otherwise a suggested operator is
    applied; otherwise the proposer paraphrases. Any failure leaves the slot
    as it was, so a mutated candidate is always returned.
    """

    def __init__(self, config: Optional[GEPAConfig] = None,
                 proposer: Optional[InstructionProposer] = None,
                 rng: Optional[random.Random] = None):
        self.config = config or GEPAConfig()
        self.proposer = proposer or InstructionProposer(self.config.reflection_lm)
        self.rng = rng or random.Random(self.config.seed)

    def mutate(self, candidate: Candidate, reflection: ReflectionResult,
               generation: Optional[int] = None) -> Candidate:
        generation = candidate.generation if generation is None else generation
        try:
            suggestions = parse_suggestions(reflection.suggested_mutations, candidate.slot_names)
        except Exception as e:
            logger.warning(f"Could not parse suggested mutations: {e}")
            suggestions = []

        targeted: Dict[int, str] = {}
        for suggestion in suggestions:
            if suggestion.slot is not None:
                targeted.setdefault(suggestion.slot, suggestion.instruction)
        operators = [s.mutation_type for s in suggestions if s.mutation_type is not None]

        instructions = list(candidate.instructions)
        mutated_slots: List[str] = []
        kinds: List[str] = []
        for index, instruction in enumerate(candidate.instructions):
            if self.rng.random() >= self.config.mutation_rate:
                continue
            new_instruction, kind = self._mutate_slot(index, instruction, targeted, operators, reflection)
            if new_instruction != instruction:
                instructions[index] = new_instruction
                mutated_slots.append(candidate.slot_name(index))
                kinds.append(kind)

        operator = "mutation" if mutated_slots else candidate.creation_metadata.get("operator", "clone")
        return candidate.derive(
            instructions,
            generation,
            [candidate.id],
            operator=operator,
            source_operator=candidate.creation_metadata.get("operator"),
            mutated_slots=mutated_slots,
            mutation_kinds=kinds,
            reflection_id=reflection.trace_id,
        )

    def _mutate_slot(self, index: int, instruction: str, targeted: Dict[int, str],
                     operators: List[MutationType], reflection: ReflectionResult):
        if index in targeted:
            return targeted[index], "targeted"
        if operators:
            mutation_type = self.rng.choice(operators)
            return apply_mutation_type(instruction, mutation_type, self.rng), mutation_type.value
        try:
            return self.proposer.propose(instruction, reflection), "paraphrase"
        except Exception as e:
            logger.warning(f"Instruction paraphrase failed: {e}, keeping original instruction")
            return instruction, "identity"
