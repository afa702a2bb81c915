"""
StudyBuddy — a tool-augmented study assistant.

The package wraps a language model with a fixed set of study-planning tools
and keeps a durable, append-only conversation log enriched with structured
metadata (flashcard sets, study logs).

Layers (bottom to top):
    1. Models and persistence (append-only SQLite conversation store)
    2. Tools (registry, schema validation, timed execution)
    3. Harness (confirmation gate, per-conversation lanes, dialogue loop)
    4. Scheduler (deferred and recurring tool calls)
    5. Agent wiring and the command-line interface
"""

__version__ = "0.1.0"
