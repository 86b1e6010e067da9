"""
Document Processing Package

  extractor.py  Format-specific text extraction (PDF / DOCX / legacy DOC)
"""

from cv_worker.processing.extractor import TextExtractor, normalize_content_type

__all__ = [
    "TextExtractor",
    "normalize_content_type",
]
