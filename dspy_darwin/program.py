"""Instruction-slot adapter over DSPy programs.

A program under optimization is any callable DSPy module; its instruction slots
are the signature instructions of its predictors, in ``named_predictors()`` order.
"""

from typing import Any, List, Protocol, Sequence, Tuple, runtime_checkable

from dspy.teleprompt.utils import get_signature, set_signature


@runtime_checkable
class InstructionProgram(Protocol):
    """What the optimizer needs from a program: call it, and reach its predictors."""

    def __call__(self, **inputs: Any) -> Any:
        ...

    def named_predictors(self) -> List[Tuple[str, Any]]:
        ...


def instruction_slot_names(program: InstructionProgram) -> List[str]:
    return [name for name, _ in program.named_predictors()]


def get_instructions(program: InstructionProgram) -> List[str]:
    """Read the current instruction of every predictor."""
    return [get_signature(predictor).instructions for _, predictor in program.named_predictors()]


def with_instructions(program: InstructionProgram, instructions: Sequence[str]):
    """Return a deep copy of ``program`` with every instruction slot overwritten.

    The given program is left untouched.
    """
    new_program = program.deepcopy()
    predictors = new_program.named_predictors()
    if len(predictors) != len(instructions):
        raise ValueError(
            f"Program has {len(predictors)} instruction slots but {len(instructions)} instructions were given"
        )

    for (_, predictor), instruction in zip(predictors, instructions):
        signature = get_signature(predictor)
        set_signature(predictor, signature.with_instructions(instruction))
    return new_program
