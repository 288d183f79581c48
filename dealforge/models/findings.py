"""
Structured findings attached to generated documents.

These are plain records, not tables; they are stored as JSON lists on
GeneratedDocument and DocumentVersion rows.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ComplianceIssue:
    """Issue raised by the legal review or the deterministic deal review."""
    severity: str  # critical, warning, info
    section: str
    description: str
    recommendation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComplianceIssue":
        return cls(
            severity=str(data.get("severity", "warning")),
            section=str(data.get("section", "")),
            description=str(data.get("description", "")),
            recommendation=data.get("recommendation"),
        )


@dataclass
class RegulatoryCheck:
    """Outcome of one regulatory check against a document."""
    name: str
    regulation: str
    category: str
    passed: bool
    description: str
    severity: str = "info"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegulatoryCheck":
        return cls(
            name=str(data.get("name", "")),
            regulation=str(data.get("regulation", "")),
            category=str(data.get("category", "")),
            passed=bool(data.get("passed", False)),
            description=str(data.get("description", "")),
            severity=str(data.get("severity", "info")),
            details=dict(data.get("details") or {}),
        )


@dataclass
class VerificationFinding:
    """Finding from deterministic document verification."""
    severity: str  # critical, warning
    field: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationFinding":
        return cls(
            severity=str(data.get("severity", "warning")),
            field=str(data.get("field", "")),
            description=str(data.get("description", "")),
        )
