"""
Extraction services.

OCR, classification, the two independent extraction paths, and the
reconciliation/self-resolution steps that merge them.
"""
