"""
API Test Healer.

Self-healing pipeline for API test suites: classifies failing tests, diffs API
specifications, applies deterministic rewrites and falls back to LLM-assisted
regeneration when rules cannot explain a failure.
"""

__version__ = "0.1.0"
