"""Typed models for extracted sources, analysis results and stored records."""

from .records import AnalysisResult, ExtractedRecord, NewRecord, StoredRecord

__all__ = ["AnalysisResult", "ExtractedRecord", "NewRecord", "StoredRecord"]
