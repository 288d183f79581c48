"""Loan document generation, review and regeneration."""
from dealforge.services.documents.feedback import build_feedback_text
from dealforge.services.documents.generator import DocumentGenerator, GenerationOutcome, filter_required_docs
from dealforge.services.documents.legal_review import LegalReviewer
from dealforge.services.documents.package import build_package
from dealforge.services.documents.program_compliance import run_program_checks
from dealforge.services.documents.prose import ProseGenerator
from dealforge.services.documents.regeneration import RegenerationService, RetryOutcome
from dealforge.services.documents.render import render_docx
from dealforge.services.documents.verify_doc import verify_document

__all__ = [
    "DocumentGenerator",
    "GenerationOutcome",
    "LegalReviewer",
    "ProseGenerator",
    "RegenerationService",
    "RetryOutcome",
    "build_package",
    "build_feedback_text",
    "filter_required_docs",
    "render_docx",
    "run_program_checks",
    "verify_document",
]
