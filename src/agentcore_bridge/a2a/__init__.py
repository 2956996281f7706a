"""
A2A Protocol Implementation

JSON-RPC models, the envelope translator used by the bridge, and the
loopback A2A server with its pluggable agents.
"""

from .models import AgentCard, Task, TaskState, TERMINAL_STATES
from .translator import EnvelopeTranslator, SendOutcome

__all__ = [
    "AgentCard",
    "EnvelopeTranslator",
    "SendOutcome",
    "TERMINAL_STATES",
    "Task",
    "TaskState",
]
