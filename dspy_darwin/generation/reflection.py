"""Trace reflection for GEPA.

Once per generation the engine hands every collected trace to
``ReflectionEngine.reflect_on_traces``. A reflection model diagnoses the
execution patterns; rule-based heuristics computed from the same pattern
summary are always merged in, so the result carries useful suggestions even
when the model is unavailable.
"""

import json
import logging
import re
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import dspy

from ..config import MutationType, lm_name
from ..data.reflection import ReflectionResult
from ..data.trace import ExecutionTrace
from ..exceptions import ReflectionError

logger = logging.getLogger(__name__)

TOKENS_PER_CALL_THRESHOLD = 400
SHORT_RESPONSE_THRESHOLD = 10
HIGH_MODEL_CALL_RATIO = 3

REDUCE_PROMPT_LENGTH = "Consider reducing prompt length to lower token usage"
ASK_FOR_DETAIL = "Responses seem brief - consider asking for more detailed explanations"
REDUCE_MODEL_CALLS = "High LLM usage detected - consider optimizing reasoning chains"
STANDARDIZE_MODEL = "Multiple models used - consider standardizing on one model for consistency"
EXECUTION_FAILURES = "Executions are failing - state the expected output fields and format explicitly"
DEFAULT_IMPROVEMENT = "Add step-by-step reasoning instructions"


@dataclass
class PatternSummary:
    model_call_count: int = 0
    internal_count: int = 0
    total_tokens: int = 0
    distinct_models: List[str] = field(default_factory=list)
    avg_response_length: float = 0.0
    timespan: float = 0.0
    error_count: int = 0

    @property
    def trace_count(self) -> int:
        return self.model_call_count + self.internal_count

    @property
    def tokens_per_call(self) -> float:
        return self.total_tokens / self.model_call_count if self.model_call_count else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_call_count": self.model_call_count,
            "internal_count": self.internal_count,
            "total_tokens": self.total_tokens,
            "tokens_per_call": self.tokens_per_call,
            "distinct_models": list(self.distinct_models),
            "avg_response_length": self.avg_response_length,
            "timespan": self.timespan,
            "error_count": self.error_count,
        }

    def describe(self) -> str:
        return "\n".join([
            f"Model calls: {self.model_call_count}",
            f"Internal events: {self.internal_count}",
            f"Total tokens: {self.total_tokens} ({self.tokens_per_call:.1f} per call)",
            f"Models: {', '.join(self.distinct_models) or 'unknown'}",
            f"Average response length: {self.avg_response_length:.1f} characters",
            f"Timespan: {self.timespan:.2f}s",
            f"Failed events: {self.error_count}",
        ])


def analyze_execution_patterns(traces: Sequence[ExecutionTrace]) -> PatternSummary:
    """Aggregate counts, tokens, models and response lengths over ``traces``."""
    model_calls = [t for t in traces if t.is_model_call()]
    models = []
    for trace in model_calls:
        model = trace.model_name
        if model and model not in models:
            models.append(model)

    responses = [t.response_text for t in model_calls]
    timestamps = [t.timestamp for t in traces]
    return PatternSummary(
        model_call_count=len(model_calls),
        internal_count=len(traces) - len(model_calls),
        total_tokens=sum(t.token_usage() for t in model_calls),
        distinct_models=models,
        avg_response_length=sum(len(r) for r in responses) / len(responses) if responses else 0.0,
        timespan=max(timestamps) - min(timestamps) if timestamps else 0.0,
        error_count=sum(1 for t in traces if t.error),
    )


def heuristic_improvements(patterns: PatternSummary) -> List[str]:
    """Rule-based improvement suggestions; never empty for a non-empty summary."""
    improvements = []
    if patterns.error_count:
        improvements.append(EXECUTION_FAILURES)
    if patterns.tokens_per_call > TOKENS_PER_CALL_THRESHOLD:
        improvements.append(REDUCE_PROMPT_LENGTH)
    if patterns.model_call_count and patterns.avg_response_length < SHORT_RESPONSE_THRESHOLD:
        improvements.append(ASK_FOR_DETAIL)
    if patterns.model_call_count > patterns.internal_count * HIGH_MODEL_CALL_RATIO:
        improvements.append(REDUCE_MODEL_CALLS)
    if len(patterns.distinct_models) > 1:
        improvements.append(STANDARDIZE_MODEL)
    return improvements or [DEFAULT_IMPROVEMENT]


def heuristic_mutation_types(patterns: PatternSummary) -> List[str]:
    """Mutation operators suited to the observed patterns."""
    mutations = []
    if patterns.avg_response_length < 15:
        mutations.append(MutationType.EXPAND.value)
    if patterns.tokens_per_call > 300:
        mutations.append(MutationType.SIMPLIFY.value)
    if patterns.model_call_count > 2:
        mutations.append(MutationType.COMBINE.value)
    if patterns.model_call_count == 1:
        mutations.append(MutationType.REWRITE.value)
    return mutations or [MutationType.REPHRASE.value]


def heuristic_diagnosis(patterns: PatternSummary) -> str:
    if patterns.tokens_per_call > TOKENS_PER_CALL_THRESHOLD:
        efficiency = "poor token efficiency"
    elif patterns.tokens_per_call > TOKENS_PER_CALL_THRESHOLD / 2:
        efficiency = "moderate token efficiency"
    else:
        efficiency = "good token efficiency"
    return (
        f"Observed {patterns.model_call_count} model calls and {patterns.internal_count} internal events "
        f"using {patterns.total_tokens} tokens across {len(patterns.distinct_models)} model(s); {efficiency}."
    )


class ReflectionSignature(dspy.Signature):
    """Diagnose how a language-model program behaved across a batch of executions and
    recommend concrete changes to its instructions."""

    pattern_summary: str = dspy.InputField(desc="Aggregate statistics over the execution traces")
    trace_samples: str = dspy.InputField(desc="A sample of individual model calls with prompts and responses")
    optimization_context: str = dspy.InputField(desc="Where the optimization currently stands")

    diagnosis: str = dspy.OutputField(desc="What is going well and what is going wrong in these executions")
    improvements: list[str] = dspy.OutputField(desc="Specific, actionable improvements to the instructions")
    confidence: float = dspy.OutputField(desc="Confidence in this analysis between 0.0 and 1.0")
    suggested_mutations: list[str] = dspy.OutputField(
        desc="Either full rewrites formatted as '<slot name>: <new instruction>' or mutation types "
             "from: rewrite, expand, simplify, combine, rephrase"
    )


class ReflectionStrategy(ABC):
    """Protocol for producing a raw reflection from a trace summary."""

    @abstractmethod
    def reflect(self,
                pattern_summary: str,
                trace_samples: str,
                optimization_context: str,
                reflection_lm: Optional[Any] = None) -> Mapping[str, Any]:
        """Return a mapping (or Prediction) with diagnosis, improvements,
        confidence and suggested_mutations. May raise on failure."""
        raise NotImplementedError


class LMReflection(ReflectionStrategy):
    """Default strategy: one structured call to the reflection model."""

    def __init__(self):
        self.reflector = dspy.Predict(ReflectionSignature)

    def reflect(self, pattern_summary, trace_samples, optimization_context, reflection_lm=None):
        with dspy.context(lm=reflection_lm) if reflection_lm else dspy.context():
            return self.reflector(
                pattern_summary=pattern_summary,
                trace_samples=trace_samples,
                optimization_context=optimization_context,
            )


class ReflectionEngine:
    """Turns a generation's traces into a ReflectionResult. Never raises."""

    def __init__(self, reflection_lm: Optional[Any] = None,
                 strategy: Optional[ReflectionStrategy] = None,
                 trace_samples: int = 3):
        self.reflection_lm = reflection_lm
        self.strategy = strategy or LMReflection()
        self.trace_samples = trace_samples

    @property
    def model_name(self) -> str:
        return lm_name(self.reflection_lm or dspy.settings.lm)

    def reflect_on_traces(self, traces: Sequence[ExecutionTrace],
                          context: Optional[Mapping[str, Any]] = None) -> ReflectionResult:
        traces = list(traces)
        trace_id = f"reflection-{secrets.token_hex(4)}"
        if not traces:
            return ReflectionResult.empty(trace_id, model=self.model_name)

        patterns = analyze_execution_patterns(traces)
        improvements = heuristic_improvements(patterns)
        metadata = {
            "model": self.model_name,
            "timestamp": time.time(),
            "trace_count": len(traces),
            "patterns": patterns.to_dict(),
        }

        try:
            raw = self.strategy.reflect(
                patterns.describe(),
                self.format_trace_samples(traces),
                _format_context(context),
                self.reflection_lm,
            )
            diagnosis, model_improvements, confidence, mutations, reasoning = _parse_reflection(raw)
        except Exception as e:
            error = e if isinstance(e, ReflectionError) else ReflectionError(str(e))
            logger.warning(f"Reflection failed: {error}, falling back to heuristic analysis")
            return ReflectionResult(
                trace_id=trace_id,
                diagnosis=f"LLM reflection failed ({error}), using fallback analysis: {heuristic_diagnosis(patterns)}",
                improvements=improvements,
                confidence=0.0,
                suggested_mutations=heuristic_mutation_types(patterns),
                metadata={**metadata, "llm_based": False, "error": str(error)},
            )

        return ReflectionResult(
            trace_id=trace_id,
            diagnosis=diagnosis,
            improvements=_merge(model_improvements, improvements),
            confidence=confidence,
            suggested_mutations=mutations or heuristic_mutation_types(patterns),
            reasoning=reasoning,
            metadata={**metadata, "llm_based": True},
        )

    def format_trace_samples(self, traces: Sequence[ExecutionTrace]) -> str:
        """Render the first few model calls (or events), then the first few failures,
        for the reflection prompt."""
        samples = ([t for t in traces if t.is_model_call()] or list(traces))[:self.trace_samples]
        failures = [t for t in traces if t.error and t not in samples][:self.trace_samples]
        lines = []
        for trace in samples + failures:
            lines.append(f"[{trace.event_name}] model={trace.model_name or 'unknown'} tokens={trace.token_usage()}")
            if trace.prompt_text:
                lines.append(f"prompt: {trace.prompt_text[:300]}")
            if trace.response_text:
                lines.append(f"response: {trace.response_text[:200]}")
            if trace.error:
                lines.append(f"error: {trace.error[:300]}")
        return "\n".join(lines) or "No model calls recorded"


def trace_summary(traces: Sequence[ExecutionTrace]) -> Dict[str, Any]:
    """Counts by kind plus timespan, as reported in optimization results."""
    patterns = analyze_execution_patterns(traces)
    return {
        "total_traces": patterns.trace_count,
        "llm_traces": patterns.model_call_count,
        "module_traces": patterns.internal_count,
        "total_tokens": patterns.total_tokens,
        "unique_models": list(patterns.distinct_models),
        "execution_timespan": patterns.timespan,
    }


def _parse_reflection(raw: Any):
    def read(name, default=None):
        if isinstance(raw, Mapping):
            return raw.get(name, default)
        return getattr(raw, name, default)

    diagnosis = str(read("diagnosis") or "").strip()
    if not diagnosis:
        raise ReflectionError("reflection answer has no diagnosis")

    try:
        confidence = float(read("confidence", 0.0))
    except (TypeError, ValueError) as e:
        raise ReflectionError(f"unparsable confidence: {e}") from e
    if confidence != confidence:
        raise ReflectionError("confidence is NaN")
    confidence = min(max(confidence, 0.0), 1.0)

    reasoning = str(read("reasoning") or "")
    return diagnosis, _as_list(read("improvements")), confidence, _as_list(read("suggested_mutations")), reasoning


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                return _as_list(json.loads(text))
            except json.JSONDecodeError:
                pass
        items = [re.sub(r"^\s*(?:[-*]|\d+[.)])\s*", "", line) for line in text.splitlines()]
        return [item.strip() for item in items if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value)]


def _merge(*groups: Sequence[str]) -> List[str]:
    merged = []
    for group in groups:
        for item in group:
            if item not in merged:
                merged.append(item)
    return merged


def _format_context(context: Optional[Mapping[str, Any]]) -> str:
    if not context:
        return "No additional context"
    return "\n".join(f"{key}: {value}" for key, value in context.items())
