"""Error taxonomy for GEPA optimization.

Only ``FatalEngineError`` (and ``ConfigurationError`` at entry) ever reach the
optimizer's top level; evaluation and reflection failures are recovered where
they happen.
"""


class GEPAError(Exception):
    """Base class for all optimizer errors."""


class ConfigurationError(GEPAError, ValueError):
    """Invalid rates, counts or datasets supplied to the optimizer."""


class EvaluationError(GEPAError):
    """A single example (or candidate) failed to run or to be scored."""


class ReflectionError(GEPAError):
    """The reflection model call failed or its answer could not be used."""


class FatalEngineError(GEPAError):
    """Anything uncaught inside the generation loop."""


class GenerationCancelled(GEPAError):
    """Raised between generation phases once a run has been cancelled."""
