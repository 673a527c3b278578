"""Migration Expert API: interview-driven migration plans with conversation history."""

__version__ = "0.1.0"
