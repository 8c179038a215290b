"""Custom exceptions for the flow engine."""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class FlowEngineError(Exception):
    """Base class for flow engine errors."""


class FlowValidationError(FlowEngineError):
    """Raised when a flow definition fails validation."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        self.errors = errors or []
        if self.errors:
            message = message + "\n  " + "\n  ".join(self.errors)
        super().__init__(message)


class StitchError(FlowEngineError):
    """Raised when edges or transfer code cannot be built for an activity."""

    def __init__(self, ref: str, piece: str, message: str) -> None:
        self.ref = ref
        self.piece = piece
        super().__init__(f"Problem in {piece} for activity {ref}: {message}")


class ScriptError(FlowEngineError):
    """Base class for expression engine failures."""


class ScriptCompilationError(ScriptError):
    """Raised when a snippet does not compile; carries every diagnostic."""

    def __init__(self, diagnostics: List[str], source: str = "") -> None:
        self.diagnostics = list(diagnostics)
        self.source = source
        super().__init__("Compilation failed:\n" + "\n".join(self.diagnostics))


class ScriptRuntimeError(ScriptError):
    """Raised when a snippet dereferences None, enriched with the call site."""

    def __init__(
        self,
        message: str,
        target: str,
        context: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.target = target
        self.context = context
        self.data = data or {}
        lines = [message, f"Context: {context}", f"Target: {target}"]
        lines.extend(f"{key}: {value}" for key, value in self.data.items())
        super().__init__("\n".join(lines))


class FlowExecutionError(FlowEngineError):
    """Raised when traversal of a flow cannot proceed."""


class ActivityExecutionError(FlowExecutionError):
    """Raised when an activity's execution contract fails."""

    def __init__(self, ref: str, message: str) -> None:
        self.ref = ref
        super().__init__(f"Activity '{ref}' failed: {message}")


class VariableTypeError(FlowEngineError, TypeError):
    """Raised when a variable holds, or is given, a value of the wrong type."""


class CollaboratorError(FlowEngineError):
    """Raised when an external collaborator (fetch, save, identity) fails."""
