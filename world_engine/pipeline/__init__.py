"""One-turn pipeline.

Executes the full turn loop for one player message: retrieve lore, build
the prompt, stream the completion, parse directives, apply effects, run
the rules, advance the turn. See orchestrator.run_turn.
"""

from .orchestrator import TurnCancelled, TurnResult, run_turn  # noqa: F401
