"""Execution trace records gathered while a generation is evaluated."""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

AttributeValue = Union[str, int, float, bool, None]

MODEL_CALL = "model-call"
INTERNAL = "internal"
MODEL_CALL_PREFIXES = ("lm.", "llm.")

_TOKEN_KEYS = ("gen_ai.usage.total_tokens", "gen_ai.usage.prompt_tokens", "tokens")
_MODEL_KEYS = ("gen_ai.request.model", "model")


def classify_event(event_name: str) -> str:
    """Classify an event as a model call or internal by its namespace."""
    return MODEL_CALL if str(event_name).startswith(MODEL_CALL_PREFIXES) else INTERNAL


@dataclass(frozen=True)
class ExecutionTrace:
    """One structured record of an execution event."""
    trace_id: str
    event_name: str
    timestamp: float
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return classify_event(self.event_name)

    def is_model_call(self) -> bool:
        return self.kind == MODEL_CALL

    def token_usage(self) -> int:
        for key in _TOKEN_KEYS:
            value = self.attributes.get(key)
            if value is None or isinstance(value, bool):
                continue
            try:
                return max(int(value), 0)
            except (TypeError, ValueError):
                continue
        return 0

    @property
    def prompt_text(self) -> str:
        return str(self.attributes.get("prompt") or "")

    @property
    def response_text(self) -> str:
        return str(self.attributes.get("response") or "")

    @property
    def model_name(self) -> Optional[str]:
        for key in _MODEL_KEYS:
            value = self.attributes.get(key)
            if value:
                return str(value)
        return None

    @property
    def error(self) -> Optional[str]:
        value = self.attributes.get("error")
        return str(value) if value else None

    @property
    def signature_name(self) -> Optional[str]:
        value = self.attributes.get("signature")
        return str(value) if value else None

    @property
    def candidate_id(self) -> Optional[str]:
        return self.metadata.get("candidate_id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "event_name": self.event_name,
            "timestamp": self.timestamp,
            "kind": self.kind,
            "attributes": dict(self.attributes),
            "metadata": dict(self.metadata),
            "token_usage": self.token_usage(),
        }
