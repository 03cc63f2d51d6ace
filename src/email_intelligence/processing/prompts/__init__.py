"""Prompt templates for content analysis."""

__all__ = ["analysis_prompt"]
