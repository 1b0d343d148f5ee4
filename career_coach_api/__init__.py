"""Career Coach API - LLM-backed resume analysis and mock interviews."""

__version__ = "0.1.0"
