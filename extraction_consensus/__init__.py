"""
Extraction Consensus — trusted field extraction for scanned Guatemalan legal documents.

Architecture: OCR text → Dual structured extraction → Consensus → OCR verification → Persisted result
Philosophy:  Two models must agree. The OCR stream gets a veto on critical fields.
"""

__version__ = "1.0.0"
