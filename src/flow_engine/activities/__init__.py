"""Activity kinds"""

from .base import ACTIVITY_KINDS, Activity, create_activity, register_activity
from .builtin import FormSubmission, Passthrough, Script, Start

__all__ = [
    "ACTIVITY_KINDS",
    "Activity",
    "create_activity",
    "register_activity",
    "FormSubmission",
    "Passthrough",
    "Script",
    "Start",
]
