"""Data models for API specification differencing."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum


HTTP_METHODS = ("get", "post", "put", "patch", "delete", "options", "head", "trace")


class ChangeType(Enum):
    """Kinds of differences between two specification snapshots."""
    FIELD_ADDED = "field_added"
    FIELD_REMOVED = "field_removed"
    FIELD_RENAMED = "field_renamed"
    TYPE_CHANGED = "type_changed"
    REQUIRED_CHANGED = "required_changed"
    ENUM_CHANGED = "enum_changed"
    VALUE_CHANGED = "value_changed"
    DEPRECATED_CHANGED = "deprecated_changed"
    PATH_CHANGED = "path_changed"
    STATUS_CODE_CHANGED = "status_code_changed"


class ChangeSeverity(Enum):
    """Severity tiers, most severe first."""
    BREAKING = "breaking"
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"

    @property
    def rank(self) -> int:
        """Numeric rank where a higher value is more severe."""
        return {
            ChangeSeverity.BREAKING: 4,
            ChangeSeverity.MAJOR: 3,
            ChangeSeverity.MINOR: 2,
            ChangeSeverity.PATCH: 1
        }[self]


@dataclass(frozen=True)
class SpecChange:
    """A single detected difference between two specification snapshots.

    ``path`` is a dotted locator into the document, e.g.
    ``paths./users/{id}.get.parameters[limit]`` or
    ``components.schemas.User.properties.email``.
    """
    change_type: ChangeType
    path: str
    severity: ChangeSeverity
    description: str
    old_value: Any = None
    new_value: Any = None
    affected_endpoints: Tuple[str, ...] = ()
    field_name: Optional[str] = None
    required: bool = False
    location: Optional[str] = None  # request, response, parameter, schema

    @property
    def is_breaking(self) -> bool:
        return self.severity == ChangeSeverity.BREAKING

    @property
    def parent_path(self) -> str:
        """Locator of the containing object (everything before the last property)."""
        marker = ".properties."
        if marker in self.path:
            return self.path.rsplit(marker, 1)[0]
        return self.path.rsplit(".", 1)[0]

    def to_dict(self) -> Dict[str, Any]:
        """Convert change to dictionary for reports and prompts."""
        return {
            "type": self.change_type.value,
            "path": self.path,
            "severity": self.severity.value,
            "description": self.description,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "affected_endpoints": list(self.affected_endpoints),
            "field_name": self.field_name,
            "required": self.required,
            "location": self.location
        }


@dataclass
class EndpointChange:
    """Added, removed or modified operation (path + method)."""
    method: str
    path: str
    change_type: str  # added, removed, modified
    changes: List[SpecChange] = field(default_factory=list)
    old_operation: Optional[Dict[str, Any]] = None
    new_operation: Optional[Dict[str, Any]] = None

    @property
    def key(self) -> str:
        return f"{self.method.upper()} {self.path}"


@dataclass
class ParameterChange:
    """Change to a single operation parameter, matched by name and location."""
    endpoint: str
    method: str
    parameter_name: str
    location: str
    change_type: ChangeType
    changes: List[SpecChange] = field(default_factory=list)
    old_parameter: Optional[Dict[str, Any]] = None
    new_parameter: Optional[Dict[str, Any]] = None


@dataclass
class ComponentChange:
    """Change to a named component (schema or security scheme)."""
    name: str
    path: str
    change_type: str  # added, removed, modified
    changes: List[SpecChange] = field(default_factory=list)
    affected_endpoints: List[str] = field(default_factory=list)
    old_definition: Optional[Dict[str, Any]] = None
    new_definition: Optional[Dict[str, Any]] = None


@dataclass
class EndpointChanges:
    added: List[EndpointChange] = field(default_factory=list)
    removed: List[EndpointChange] = field(default_factory=list)
    modified: List[EndpointChange] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.removed) + len(self.modified)


@dataclass
class ParameterChanges:
    added: List[ParameterChange] = field(default_factory=list)
    removed: List[ParameterChange] = field(default_factory=list)
    modified: List[ParameterChange] = field(default_factory=list)
    required_changed: List[ParameterChange] = field(default_factory=list)
    type_changed: List[ParameterChange] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.removed) + len(self.modified)


@dataclass
class ComponentChanges:
    added: List[ComponentChange] = field(default_factory=list)
    removed: List[ComponentChange] = field(default_factory=list)
    modified: List[ComponentChange] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.removed) + len(self.modified)


@dataclass
class DiffSummary:
    """Derived counts over all detected changes."""
    total_changes: int = 0
    breaking_changes: int = 0
    major_changes: int = 0
    minor_changes: int = 0
    patch_changes: int = 0
    endpoints_added: int = 0
    endpoints_removed: int = 0
    endpoints_modified: int = 0
    schemas_added: int = 0
    schemas_removed: int = 0
    schemas_modified: int = 0

    @property
    def is_backward_compatible(self) -> bool:
        return self.breaking_changes == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_changes": self.total_changes,
            "breaking_changes": self.breaking_changes,
            "major_changes": self.major_changes,
            "minor_changes": self.minor_changes,
            "patch_changes": self.patch_changes,
            "endpoints_added": self.endpoints_added,
            "endpoints_removed": self.endpoints_removed,
            "endpoints_modified": self.endpoints_modified,
            "schemas_added": self.schemas_added,
            "schemas_removed": self.schemas_removed,
            "schemas_modified": self.schemas_modified,
            "is_backward_compatible": self.is_backward_compatible
        }


@dataclass
class SpecDiff:
    """Directional (old -> new) comparison of two specification documents."""
    old_version: Optional[str]
    new_version: Optional[str]
    openapi_version: Optional[str]
    summary: DiffSummary
    endpoints: EndpointChanges
    parameters: ParameterChanges
    schemas: ComponentChanges
    auth: ComponentChanges
    metadata: Dict[str, SpecChange] = field(default_factory=dict)
    all_changes: List[SpecChange] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_backward_compatible(self) -> bool:
        return self.summary.is_backward_compatible

    @property
    def breaking_changes(self) -> List[SpecChange]:
        return [c for c in self.all_changes if c.is_breaking]

    def to_dict(self) -> Dict[str, Any]:
        """Convert diff to a JSON-ready dictionary."""
        return {
            "old_version": self.old_version,
            "new_version": self.new_version,
            "openapi_version": self.openapi_version,
            "summary": self.summary.to_dict(),
            "endpoints_added": [e.key for e in self.endpoints.added],
            "endpoints_removed": [e.key for e in self.endpoints.removed],
            "endpoints_modified": [e.key for e in self.endpoints.modified],
            "changes": [c.to_dict() for c in self.all_changes],
            "generated_at": self.generated_at.isoformat()
        }


@dataclass
class DiffReport:
    """Human-readable digest of a SpecDiff."""
    summary: str
    breaking_changes: List[str] = field(default_factory=list)
    major_changes: List[str] = field(default_factory=list)
    minor_changes: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    migration_notes: List[str] = field(default_factory=list)


@dataclass
class SpecLoadResult:
    """Parsed specification plus load metadata."""
    spec: Dict[str, Any]
    filepath: str
    format: str
    size: int
    parse_time: float


@dataclass
class ComparisonOptions:
    """Switches that tune specification comparison."""
    ignore_description_changes: bool = False
    ignore_deprecated: bool = False
