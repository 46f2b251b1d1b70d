"""Per-generation trace buffer and the DSPy callback that feeds it."""

import logging
import secrets
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set

from dspy.utils.callback import BaseCallback

from ..data.trace import ExecutionTrace, MODEL_CALL, INTERNAL

logger = logging.getLogger(__name__)

TRACE_ID_LENGTH = 16
CHARS_PER_TOKEN = 4


class TraceCollector:
    """Append-only, thread-safe buffer of execution traces.

    One collector lives for exactly one generation. Evaluation workers append
    concurrently; readers get snapshots, so they never see a list being mutated.
    """

    def __init__(self, id_length: int = TRACE_ID_LENGTH):
        self.id_length = id_length
        self._traces: List[ExecutionTrace] = []
        self._ids: Set[str] = set()
        self._lock = threading.Lock()

    def collect(self, event_name: str, record: Optional[Mapping[str, Any]] = None) -> Optional[ExecutionTrace]:
        """Append a trace built from ``record``.

        ``record`` may carry ``trace_id``, ``timestamp``, ``attributes`` and
        ``metadata``; anything missing or malformed defaults to empty. A record
        whose supplied ``trace_id`` was already collected is ignored.
        """
        record = record if isinstance(record, Mapping) else {}
        attributes = _as_dict(record.get("attributes"))
        metadata = _as_dict(record.get("metadata"))
        timestamp = _as_timestamp(record.get("timestamp"))
        supplied_id = record.get("trace_id")

        with self._lock:
            if supplied_id:
                trace_id = str(supplied_id)
                if trace_id in self._ids:
                    logger.debug(f"Ignoring duplicate trace {trace_id}")
                    return None
            else:
                trace_id = self._generate_trace_id()
            trace = ExecutionTrace(
                trace_id=trace_id,
                event_name=str(event_name or ""),
                timestamp=timestamp,
                attributes=attributes,
                metadata=metadata,
            )
            self._ids.add(trace_id)
            self._traces.append(trace)
        return trace

    def _generate_trace_id(self) -> str:
        # Caller holds the lock
        while True:
            trace_id = secrets.token_hex(self.id_length // 2)
            if trace_id not in self._ids:
                return trace_id

    def count(self) -> int:
        with self._lock:
            return len(self._traces)

    def all(self) -> List[ExecutionTrace]:
        with self._lock:
            return list(self._traces)

    def model_call_traces(self) -> List[ExecutionTrace]:
        return [t for t in self.all() if t.kind == MODEL_CALL]

    def internal_traces(self) -> List[ExecutionTrace]:
        return [t for t in self.all() if t.kind == INTERNAL]

    def traces_for_candidate(self, candidate_id: str) -> List[ExecutionTrace]:
        return [t for t in self.all() if t.candidate_id == candidate_id]

    def timespan(self) -> float:
        traces = self.all()
        if len(traces) < 2:
            return 0.0
        timestamps = [t.timestamp for t in traces]
        return max(timestamps) - min(timestamps)

    def clear(self):
        with self._lock:
            self._traces = []
            self._ids = set()


class TraceCallback(BaseCallback):
    """Emits DSPy LM and module events into a TraceCollector.

    Also counts the model calls and tokens of the evaluation it is attached to,
    so one instance should be used per candidate evaluation.
    """

    def __init__(self, collector: Optional[TraceCollector] = None,
                 candidate_id: Optional[str] = None, generation: Optional[int] = None):
        self.collector = collector
        self.metadata = {"candidate_id": candidate_id, "generation": generation}
        self.lm_calls = 0
        self.total_tokens = 0
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def on_lm_start(self, call_id: str, instance: Any, inputs: Dict[str, Any]):
        with self._lock:
            self._pending[call_id] = {
                "start": time.time(),
                "model": getattr(instance, "model", None) or instance.__class__.__name__,
                "prompt": _prompt_text(inputs),
            }

    def on_lm_end(self, call_id: str, outputs: Optional[Any], exception: Optional[Exception] = None):
        with self._lock:
            started = self._pending.pop(call_id, None) or {"start": time.time(), "model": None, "prompt": ""}
        response = _response_text(outputs)
        tokens = (len(started["prompt"]) + len(response)) // CHARS_PER_TOKEN
        with self._lock:
            self.lm_calls += 1
            self.total_tokens += tokens

        attributes = {
            "gen_ai.request.model": started["model"],
            "prompt": started["prompt"],
            "response": response,
            "gen_ai.usage.total_tokens": tokens,
            "duration": time.time() - started["start"],
        }
        if exception is not None:
            attributes["error"] = str(exception)
        self._emit("lm.call", started["start"], attributes)

    def on_module_start(self, call_id: str, instance: Any, inputs: Dict[str, Any]):
        signature = getattr(instance, "signature", None)
        with self._lock:
            self._pending[call_id] = {
                "start": time.time(),
                "module": instance.__class__.__name__,
                "signature": getattr(signature, "__name__", None),
            }

    def on_module_end(self, call_id: str, outputs: Optional[Any], exception: Optional[Exception] = None):
        with self._lock:
            started = self._pending.pop(call_id, None)
        if started is None:
            return
        attributes = {
            "module": started["module"],
            "signature": started["signature"],
            "duration": time.time() - started["start"],
        }
        if exception is not None:
            attributes["error"] = str(exception)
        self._emit(f"module.{started['module']}.predict_complete", started["start"], attributes)

    def _emit(self, event_name: str, timestamp: float, attributes: Dict[str, Any]):
        if self.collector is None:
            return
        self.collector.collect(event_name, {
            "timestamp": timestamp,
            "attributes": attributes,
            "metadata": dict(self.metadata),
        })


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, Mapping):
        return {str(k): v for k, v in value.items()}
    return {}


def _as_timestamp(value: Any) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return time.time()


def _prompt_text(inputs: Mapping[str, Any]) -> str:
    if not isinstance(inputs, Mapping):
        return ""
    if inputs.get("prompt"):
        return str(inputs["prompt"])
    messages = inputs.get("messages") or []
    parts = []
    for message in messages:
        if isinstance(message, Mapping):
            parts.append(str(message.get("content", "")))
    return "\n".join(parts)


def _response_text(outputs: Any) -> str:
    if outputs is None:
        return ""
    if isinstance(outputs, (list, tuple)):
        if not outputs:
            return ""
        outputs = outputs[0]
    if isinstance(outputs, Mapping):
        return str(outputs.get("text") or outputs.get("content") or "")
    return str(outputs)
