"""
Validation Models

Issues found while checking user input or stored data. Errors block a
mutation; warnings are reported but never block.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Result of validating one entity."""

    entity_type: str = Field(
        ...,
        description="Type of entity validated (e.g., 'transaction', 'card')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity, when it has one yet"
    )
    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )

    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    @property
    def is_valid(self) -> bool:
        """Valid when there are no error-level issues (warnings are okay)."""
        return not self.has_errors

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        """Messages of the non-blocking issues."""
        return [issue.message for issue in self.issues if issue.severity == "warning"]


class IntegrityReport(BaseModel):
    """Consistency problems found across stored cards and transactions."""

    checked_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    issues: list[str] = Field(
        default_factory=list,
        description="One human-readable line per problem"
    )

    @property
    def is_valid(self) -> bool:
        return not self.issues
