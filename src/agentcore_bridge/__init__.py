"""
agentcore-bridge: AgentCore HTTP contract in front of an A2A agent server.

Exposes /invocations, /ping and /ws on the AgentCore port and translates
every call into A2A JSON-RPC against the co-located loopback A2A server.
"""

__version__ = "0.1.0"

from .main import create_app
from .runtime import AgentRuntime

__all__ = ["AgentRuntime", "create_app", "__version__"]
