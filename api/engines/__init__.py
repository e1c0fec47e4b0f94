"""
Engines Package

- recommendation: profile normalization, candidate retrieval, LLM ranking
  with heuristic fallback, and persistence orchestration
"""

__version__ = "1.0.0"
