"""appgen - streamed, multi-phase application generation from an LLM.

Budgets each call, splits oversized phases, consumes the delimiter-tagged
response stream incrementally, salvages truncated output and retries failed
attempts with corrective instructions.
"""

__version__ = "0.1.0"
