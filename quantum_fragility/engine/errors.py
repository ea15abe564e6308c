"""Exception hierarchy for the fragility engine.

Recoverable errors mean the caller sent something the engine cannot use
(a bad upload, an out-of-range parameter, a broken circuit, or a call out of
state-machine order). They also subclass ``ValueError`` so code that already
guards input validation with ``except ValueError`` keeps working.

``EngineFault`` is different: the engine's own bookkeeping is inconsistent,
the current run must stop, and the caller has to ``reset()``.
"""

from __future__ import annotations


class FragilityError(RuntimeError):
    """Base class for every error raised by the engine."""


class RecoverableError(FragilityError, ValueError):
    """The caller can fix the input and try again."""


class InvalidImageFormat(RecoverableError):
    """Uploaded image could not be decoded or exceeds the size bounds."""


class InvalidConfiguration(RecoverableError):
    """A simulation parameter is outside its allowed range."""


class InvalidCircuit(RecoverableError):
    """A gate references a qubit that does not exist or has bad arity."""


class EngineNotReady(RecoverableError):
    """An operation was called out of state-machine order."""


class EngineFault(FragilityError):
    """Internal consistency failure. The run stops and must be reset."""


ERROR_TYPES: dict[str, type[FragilityError]] = {
    cls.__name__: cls
    for cls in (
        FragilityError,
        RecoverableError,
        InvalidImageFormat,
        InvalidConfiguration,
        InvalidCircuit,
        EngineNotReady,
        EngineFault,
    )
}
