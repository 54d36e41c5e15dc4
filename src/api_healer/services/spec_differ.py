"""
Specification Differ for the API Test Self-Healing System.

Structurally compares two versions of an OpenAPI document and produces a
categorized, severity-tagged set of changes. Diffing is directional: the
first argument is the old snapshot, the second the new one.
"""

import json
import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import yaml

from ..core.exceptions import SpecLoadError
from ..core.models.spec_models import (
    HTTP_METHODS,
    ChangeSeverity,
    ChangeType,
    ComparisonOptions,
    ComponentChange,
    ComponentChanges,
    DiffReport,
    DiffSummary,
    EndpointChange,
    EndpointChanges,
    ParameterChange,
    ParameterChanges,
    SpecChange,
    SpecDiff,
    SpecLoadResult
)

logger = logging.getLogger(__name__)


class SpecLoader:
    """Loads OpenAPI documents from JSON or YAML files."""

    SUPPORTED_FORMATS = {".json": "json", ".yaml": "yaml", ".yml": "yaml"}
    REQUIRED_FIELDS = ("openapi", "info", "paths")

    def load(self, filepath: str) -> SpecLoadResult:
        """
        Load and parse an OpenAPI document.

        Args:
            filepath: Path to a .json, .yaml or .yml file

        Returns:
            SpecLoadResult with the parsed document and load metadata

        Raises:
            SpecLoadError: If the file cannot be read, parsed or lacks required fields
        """
        start_time = time.perf_counter()
        path = Path(filepath).resolve()
        ext = path.suffix.lower()

        spec_format = self.SUPPORTED_FORMATS.get(ext)
        if spec_format is None:
            raise SpecLoadError(
                f"Unsupported file format: {ext}. Use .json, .yaml, or .yml", str(path))

        try:
            content = path.read_text(encoding="utf-8")
            size = path.stat().st_size
        except OSError as e:
            raise SpecLoadError(f"Failed to load spec from {filepath}: {e}", str(path)) from e

        try:
            if spec_format == "json":
                spec = json.loads(content)
            else:
                spec = yaml.safe_load(content)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise SpecLoadError(f"Failed to parse spec from {filepath}: {e}", str(path)) from e

        if not isinstance(spec, dict):
            raise SpecLoadError(f"Invalid OpenAPI spec in {filepath}: document is not a mapping", str(path))

        missing = [name for name in self.REQUIRED_FIELDS if spec.get(name) is None]
        if missing:
            raise SpecLoadError(
                f"Invalid OpenAPI spec: missing required fields ({', '.join(missing)})", str(path))

        parse_time = time.perf_counter() - start_time
        logger.debug(f"Loaded {spec_format} spec {path} ({size} bytes) in {parse_time:.3f}s")

        return SpecLoadResult(
            spec=spec,
            filepath=str(path),
            format=spec_format,
            size=size,
            parse_time=parse_time
        )


class SpecDiffer:
    """Directional structural comparison of two OpenAPI documents."""

    def __init__(self, options: Optional[ComparisonOptions] = None):
        self.options = options or ComparisonOptions()
        self.loader = SpecLoader()

    def load_spec(self, filepath: str) -> SpecLoadResult:
        """Load a specification file through the configured loader."""
        return self.loader.load(filepath)

    def compare_specs(self, old_spec: Dict[str, Any], new_spec: Dict[str, Any]) -> SpecDiff:
        """
        Compare two OpenAPI documents.

        Args:
            old_spec: Previous specification snapshot
            new_spec: Current specification snapshot

        Returns:
            SpecDiff with categorized changes and a derived summary
        """
        old_spec = old_spec or {}
        new_spec = new_spec or {}
        all_changes: List[SpecChange] = []

        endpoints, parameters = self.detect_endpoint_changes(old_spec, new_spec, all_changes)
        schemas = self.detect_schema_changes(old_spec, new_spec, all_changes)
        auth = self.detect_auth_changes(old_spec, new_spec, all_changes)
        metadata = self.detect_metadata_changes(old_spec, new_spec, all_changes)

        summary = self._generate_summary(all_changes, endpoints, schemas)

        logger.info(
            f"Spec diff {self._info(old_spec).get('version')} -> {self._info(new_spec).get('version')}: "
            f"{summary.total_changes} changes, {summary.breaking_changes} breaking")

        return SpecDiff(
            old_version=self._info(old_spec).get("version"),
            new_version=self._info(new_spec).get("version"),
            openapi_version=new_spec.get("openapi"),
            summary=summary,
            endpoints=endpoints,
            parameters=parameters,
            schemas=schemas,
            auth=auth,
            metadata=metadata,
            all_changes=all_changes
        )

    def detect_endpoint_changes(
        self,
        old_spec: Dict[str, Any],
        new_spec: Dict[str, Any],
        all_changes: List[SpecChange]
    ) -> Tuple[EndpointChanges, ParameterChanges]:
        """Detect added, removed and modified operations, including their parameters."""
        endpoints = EndpointChanges()
        parameters = ParameterChanges()

        old_paths = old_spec.get("paths") or {}
        new_paths = new_spec.get("paths") or {}

        # Added paths
        for path_key, path_item in new_paths.items():
            if path_key in old_paths:
                continue
            for method in self._get_http_methods(path_item):
                self._record_endpoint(
                    endpoints.added, all_changes, path_key, method, "added",
                    new_operation=path_item[method],
                    description=f"Added endpoint: {method.upper()} {path_key}")

        # Removed paths
        for path_key, path_item in old_paths.items():
            if path_key in new_paths:
                continue
            for method in self._get_http_methods(path_item):
                self._record_endpoint(
                    endpoints.removed, all_changes, path_key, method, "removed",
                    old_operation=path_item[method],
                    description=f"Removed endpoint: {method.upper()} {path_key}")

        # Shared paths
        for path_key, old_item in old_paths.items():
            new_item = new_paths.get(path_key)
            if new_item is None:
                continue

            for method in self._get_http_methods(old_item):
                old_operation = old_item[method]
                new_operation = new_item.get(method) if isinstance(new_item, dict) else None

                if not new_operation:
                    self._record_endpoint(
                        endpoints.removed, all_changes, path_key, method, "removed",
                        old_operation=old_operation,
                        description=f"Removed method {method.upper()} from {path_key}")
                    continue

                base_path = f"paths.{path_key}.{method}"
                changes = self.compare_operations(old_operation, new_operation, base_path)
                changes.extend(self._compare_operation_parameters(
                    path_key, method, old_operation, new_operation, parameters))

                if changes:
                    endpoints.modified.append(EndpointChange(
                        method=method,
                        path=path_key,
                        change_type="modified",
                        changes=changes,
                        old_operation=old_operation,
                        new_operation=new_operation
                    ))
                    all_changes.extend(changes)

            for method in self._get_http_methods(new_item):
                if isinstance(old_item, dict) and old_item.get(method):
                    continue
                self._record_endpoint(
                    endpoints.added, all_changes, path_key, method, "added",
                    new_operation=new_item[method],
                    description=f"Added method {method.upper()} to {path_key}")

        return endpoints, parameters

    def detect_schema_changes(
        self,
        old_spec: Dict[str, Any],
        new_spec: Dict[str, Any],
        all_changes: List[SpecChange]
    ) -> ComponentChanges:
        """Detect added, removed and modified component schemas."""
        result = ComponentChanges()
        old_schemas = self._components(old_spec).get("schemas") or {}
        new_schemas = self._components(new_spec).get("schemas") or {}

        for name, schema in new_schemas.items():
            if name in old_schemas:
                continue
            affected = self.find_endpoints_using_schema(new_spec, name)
            change = SpecChange(
                change_type=ChangeType.FIELD_ADDED,
                path=f"components.schemas.{name}",
                severity=ChangeSeverity.MINOR,
                description=f"Added schema '{name}'",
                new_value=schema,
                affected_endpoints=tuple(affected),
                location="schema"
            )
            result.added.append(ComponentChange(
                name=name, path=change.path, change_type="added", changes=[change],
                affected_endpoints=affected, new_definition=schema))
            all_changes.append(change)

        for name, schema in old_schemas.items():
            if name in new_schemas:
                continue
            affected = self.find_endpoints_using_schema(old_spec, name)
            change = SpecChange(
                change_type=ChangeType.FIELD_REMOVED,
                path=f"components.schemas.{name}",
                severity=ChangeSeverity.BREAKING,
                description=f"Removed schema '{name}'",
                old_value=schema,
                affected_endpoints=tuple(affected),
                location="schema"
            )
            result.removed.append(ComponentChange(
                name=name, path=change.path, change_type="removed", changes=[change],
                affected_endpoints=affected, old_definition=schema))
            all_changes.append(change)

        for name, old_schema in old_schemas.items():
            new_schema = new_schemas.get(name)
            if new_schema is None:
                continue
            base_path = f"components.schemas.{name}"
            schema_changes = self.compare_schemas(old_schema, new_schema, base_path, location="schema")
            if not schema_changes:
                continue

            affected = self.find_endpoints_using_schema(new_spec, name)
            schema_changes = [replace(c, affected_endpoints=tuple(affected)) for c in schema_changes]
            result.modified.append(ComponentChange(
                name=name, path=base_path, change_type="modified", changes=schema_changes,
                affected_endpoints=affected, old_definition=old_schema, new_definition=new_schema))
            all_changes.extend(schema_changes)

        return result

    def detect_auth_changes(
        self,
        old_spec: Dict[str, Any],
        new_spec: Dict[str, Any],
        all_changes: List[SpecChange]
    ) -> ComponentChanges:
        """Detect added, removed and modified security schemes."""
        result = ComponentChanges()
        old_schemes = self._components(old_spec).get("securitySchemes") or {}
        new_schemes = self._components(new_spec).get("securitySchemes") or {}

        for name, scheme in new_schemes.items():
            if name in old_schemes:
                continue
            affected = self.find_endpoints_using_auth(new_spec, name)
            change = SpecChange(
                change_type=ChangeType.FIELD_ADDED,
                path=f"components.securitySchemes.{name}",
                severity=ChangeSeverity.MINOR,
                description=f"Added security scheme '{name}' ({scheme.get('type')})",
                new_value=scheme,
                affected_endpoints=tuple(affected)
            )
            result.added.append(ComponentChange(
                name=name, path=change.path, change_type="added", changes=[change],
                affected_endpoints=affected, new_definition=scheme))
            all_changes.append(change)

        for name, scheme in old_schemes.items():
            if name in new_schemes:
                continue
            affected = self.find_endpoints_using_auth(old_spec, name)
            change = SpecChange(
                change_type=ChangeType.FIELD_REMOVED,
                path=f"components.securitySchemes.{name}",
                severity=ChangeSeverity.BREAKING,
                description=f"Removed security scheme '{name}'",
                old_value=scheme,
                affected_endpoints=tuple(affected)
            )
            result.removed.append(ComponentChange(
                name=name, path=change.path, change_type="removed", changes=[change],
                affected_endpoints=affected, old_definition=scheme))
            all_changes.append(change)

        for name, old_scheme in old_schemes.items():
            new_scheme = new_schemes.get(name)
            if new_scheme is None or old_scheme.get("type") == new_scheme.get("type"):
                continue
            affected = self.find_endpoints_using_auth(new_spec, name)
            change = SpecChange(
                change_type=ChangeType.TYPE_CHANGED,
                path=f"components.securitySchemes.{name}.type",
                severity=ChangeSeverity.BREAKING,
                description=f"Auth type changed from '{old_scheme.get('type')}' to '{new_scheme.get('type')}'",
                old_value=old_scheme.get("type"),
                new_value=new_scheme.get("type"),
                affected_endpoints=tuple(affected)
            )
            result.modified.append(ComponentChange(
                name=name, path=f"components.securitySchemes.{name}", change_type="modified",
                changes=[change], affected_endpoints=affected,
                old_definition=old_scheme, new_definition=new_scheme))
            all_changes.append(change)

        return result

    def detect_metadata_changes(
        self,
        old_spec: Dict[str, Any],
        new_spec: Dict[str, Any],
        all_changes: List[SpecChange]
    ) -> Dict[str, SpecChange]:
        """Detect title, description and version changes in the info block."""
        metadata: Dict[str, SpecChange] = {}
        old_info = self._info(old_spec)
        new_info = self._info(new_spec)

        if old_info.get("title") != new_info.get("title"):
            metadata["title"] = SpecChange(
                change_type=ChangeType.VALUE_CHANGED,
                path="info.title",
                severity=ChangeSeverity.PATCH,
                description=f"API title changed from '{old_info.get('title')}' to '{new_info.get('title')}'",
                old_value=old_info.get("title"),
                new_value=new_info.get("title")
            )

        if (old_info.get("description") != new_info.get("description")
                and not self.options.ignore_description_changes):
            metadata["description"] = SpecChange(
                change_type=ChangeType.VALUE_CHANGED,
                path="info.description",
                severity=ChangeSeverity.PATCH,
                description="API description changed",
                old_value=old_info.get("description"),
                new_value=new_info.get("description")
            )

        if old_info.get("version") != new_info.get("version"):
            metadata["version"] = SpecChange(
                change_type=ChangeType.VALUE_CHANGED,
                path="info.version",
                severity=ChangeSeverity.PATCH,
                description=f"API version changed from '{old_info.get('version')}' to '{new_info.get('version')}'",
                old_value=old_info.get("version"),
                new_value=new_info.get("version")
            )

        all_changes.extend(metadata.values())
        return metadata

    def compare_operations(
        self,
        old_op: Dict[str, Any],
        new_op: Dict[str, Any],
        base_path: str
    ) -> List[SpecChange]:
        """Compare operation-level attributes: deprecation, summary, request body and responses."""
        changes: List[SpecChange] = []

        if not self.options.ignore_deprecated and bool(old_op.get("deprecated")) != bool(new_op.get("deprecated")):
            deprecated = bool(new_op.get("deprecated"))
            changes.append(SpecChange(
                change_type=ChangeType.DEPRECATED_CHANGED,
                path=f"{base_path}.deprecated",
                severity=ChangeSeverity.MAJOR if deprecated else ChangeSeverity.MINOR,
                description="Endpoint marked as deprecated" if deprecated else "Endpoint no longer deprecated",
                old_value=bool(old_op.get("deprecated")),
                new_value=deprecated
            ))

        if not self.options.ignore_description_changes and old_op.get("summary") != new_op.get("summary"):
            changes.append(SpecChange(
                change_type=ChangeType.VALUE_CHANGED,
                path=f"{base_path}.summary",
                severity=ChangeSeverity.PATCH,
                description="Summary changed",
                old_value=old_op.get("summary"),
                new_value=new_op.get("summary")
            ))

        changes.extend(self._compare_request_bodies(
            old_op.get("requestBody"), new_op.get("requestBody"), f"{base_path}.requestBody"))
        changes.extend(self._compare_responses(
            old_op.get("responses") or {}, new_op.get("responses") or {}, f"{base_path}.responses"))

        return changes

    def compare_parameters(
        self,
        old_param: Dict[str, Any],
        new_param: Dict[str, Any],
        base_path: str
    ) -> List[SpecChange]:
        """Compare a matched parameter pair."""
        changes: List[SpecChange] = []
        name = new_param.get("name")

        if bool(old_param.get("required")) != bool(new_param.get("required")):
            required = bool(new_param.get("required"))
            changes.append(SpecChange(
                change_type=ChangeType.REQUIRED_CHANGED,
                path=f"{base_path}.required",
                severity=ChangeSeverity.BREAKING if required else ChangeSeverity.MINOR,
                description=f"Parameter '{name}' is now {'required' if required else 'optional'}",
                old_value=bool(old_param.get("required")),
                new_value=required,
                field_name=name,
                required=required,
                location="parameter"
            ))

        old_schema = old_param.get("schema")
        new_schema = new_param.get("schema")
        if old_schema and new_schema:
            changes.extend(self.compare_schemas(old_schema, new_schema, f"{base_path}.schema", location="parameter"))
        elif old_schema and not new_schema:
            changes.append(SpecChange(
                change_type=ChangeType.FIELD_REMOVED,
                path=f"{base_path}.schema",
                severity=ChangeSeverity.BREAKING,
                description="Parameter schema removed",
                old_value=old_schema,
                location="parameter"
            ))
        elif new_schema and not old_schema:
            changes.append(SpecChange(
                change_type=ChangeType.FIELD_ADDED,
                path=f"{base_path}.schema",
                severity=ChangeSeverity.MINOR,
                description="Parameter schema added",
                new_value=new_schema,
                location="parameter"
            ))

        return changes

    def compare_schemas(
        self,
        old_schema: Dict[str, Any],
        new_schema: Dict[str, Any],
        base_path: str,
        location: str = "schema"
    ) -> List[SpecChange]:
        """
        Recursively compare two schema objects.

        Recursion stops at ``$ref`` nodes: a changed reference target is reported
        as a single breaking change and the referenced components are compared
        separately through the component table.
        """
        changes: List[SpecChange] = []
        if not isinstance(old_schema, dict) or not isinstance(new_schema, dict):
            return changes

        old_ref = old_schema.get("$ref")
        new_ref = new_schema.get("$ref")
        if old_ref or new_ref:
            if old_ref != new_ref:
                changes.append(SpecChange(
                    change_type=ChangeType.VALUE_CHANGED,
                    path=f"{base_path}.$ref",
                    severity=ChangeSeverity.BREAKING,
                    description=f"Schema reference changed from '{old_ref}' to '{new_ref}'",
                    old_value=old_ref,
                    new_value=new_ref,
                    location=location
                ))
            return changes

        if old_schema.get("type") != new_schema.get("type"):
            changes.append(SpecChange(
                change_type=ChangeType.TYPE_CHANGED,
                path=f"{base_path}.type",
                severity=ChangeSeverity.BREAKING,
                description=f"Type changed from '{old_schema.get('type')}' to '{new_schema.get('type')}'",
                old_value=old_schema.get("type"),
                new_value=new_schema.get("type"),
                field_name=self._field_from_path(base_path),
                location=location
            ))

        old_required = old_schema.get("required") or []
        new_required = new_schema.get("required") or []
        for field_name in new_required:
            if field_name not in old_required:
                changes.append(SpecChange(
                    change_type=ChangeType.REQUIRED_CHANGED,
                    path=f"{base_path}.required",
                    severity=ChangeSeverity.BREAKING,
                    description=f"Field '{field_name}' is now required",
                    old_value=list(old_required),
                    new_value=list(new_required),
                    field_name=field_name,
                    required=True,
                    location=location
                ))

        old_props = old_schema.get("properties")
        new_props = new_schema.get("properties")
        if old_props is not None or new_props is not None:
            old_props = old_props or {}
            new_props = new_props or {}

            for prop, prop_schema in new_props.items():
                if prop not in old_props:
                    changes.append(SpecChange(
                        change_type=ChangeType.FIELD_ADDED,
                        path=f"{base_path}.properties.{prop}",
                        severity=ChangeSeverity.MINOR,
                        description=f"Added property '{prop}'",
                        new_value=prop_schema,
                        field_name=prop,
                        required=prop in new_required,
                        location=location
                    ))

            for prop, prop_schema in old_props.items():
                if prop not in new_props:
                    changes.append(SpecChange(
                        change_type=ChangeType.FIELD_REMOVED,
                        path=f"{base_path}.properties.{prop}",
                        severity=ChangeSeverity.BREAKING,
                        description=f"Removed property '{prop}'",
                        old_value=prop_schema,
                        field_name=prop,
                        required=prop in old_required,
                        location=location
                    ))

            for prop, old_prop_schema in old_props.items():
                new_prop_schema = new_props.get(prop)
                if new_prop_schema is not None:
                    changes.extend(self.compare_schemas(
                        old_prop_schema, new_prop_schema,
                        f"{base_path}.properties.{prop}", location=location))

        if isinstance(old_schema.get("items"), dict) and isinstance(new_schema.get("items"), dict):
            changes.extend(self.compare_schemas(
                old_schema["items"], new_schema["items"], f"{base_path}.items", location=location))

        old_enum = old_schema.get("enum")
        new_enum = new_schema.get("enum")
        if old_enum is not None and new_enum is not None and \
                self._enum_values(old_enum) != self._enum_values(new_enum):
            changes.append(SpecChange(
                change_type=ChangeType.ENUM_CHANGED,
                path=f"{base_path}.enum",
                severity=ChangeSeverity.BREAKING,
                description="Enum values changed",
                old_value=old_enum,
                new_value=new_enum,
                field_name=self._field_from_path(base_path),
                location=location
            ))

        return changes

    def find_endpoints_using_schema(self, spec: Dict[str, Any], schema_name: str) -> List[str]:
        """Endpoints whose operation text contains a reference to the named schema."""
        schema_ref = f"#/components/schemas/{schema_name}"
        endpoints = []
        for path_key, path_item in (spec.get("paths") or {}).items():
            for method in self._get_http_methods(path_item):
                serialized = json.dumps(path_item[method], default=str)
                # Prefix references such as .../User vs .../UserList both match
                if schema_ref in serialized:
                    endpoints.append(f"{method.upper()} {path_key}")
        return endpoints

    def find_endpoints_using_auth(self, spec: Dict[str, Any], scheme_name: str) -> List[str]:
        """Endpoints whose security requirements name the given scheme."""
        endpoints = []
        for path_key, path_item in (spec.get("paths") or {}).items():
            for method in self._get_http_methods(path_item):
                for requirement in path_item[method].get("security") or []:
                    if isinstance(requirement, dict) and scheme_name in requirement:
                        endpoints.append(f"{method.upper()} {path_key}")
        return endpoints

    def generate_diff_report(self, diff: SpecDiff) -> DiffReport:
        """
        Generate a human-readable digest of a diff.

        Args:
            diff: Result of compare_specs

        Returns:
            DiffReport with categorized lines, recommendations and migration notes
        """
        report = DiffReport(summary="")

        for change in diff.all_changes:
            message = f"{change.path}: {change.description}"
            if change.severity == ChangeSeverity.BREAKING:
                report.breaking_changes.append(message)
            elif change.severity == ChangeSeverity.MAJOR:
                report.major_changes.append(message)
            elif change.severity == ChangeSeverity.MINOR:
                report.minor_changes.append(message)

        summary = diff.summary
        report.summary = (
            f"API diff: {diff.old_version} → {diff.new_version}\n"
            f"Total changes: {summary.total_changes}\n"
            f"Breaking: {summary.breaking_changes}, Major: {summary.major_changes}, "
            f"Minor: {summary.minor_changes}\n"
            f"Backward compatible: {'Yes' if summary.is_backward_compatible else 'No'}"
        )

        if summary.breaking_changes > 0:
            report.recommendations.append("⚠️  Breaking changes detected - consider major version bump")
            report.recommendations.append("Update client SDKs and documentation")
            report.recommendations.append("Plan migration strategy for existing users")

        if diff.endpoints.removed:
            report.recommendations.append(
                f"{len(diff.endpoints.removed)} endpoint(s) removed - ensure clients are updated")

        if diff.schemas.modified:
            report.recommendations.append(
                f"{len(diff.schemas.modified)} schema(s) modified - validate data contracts")

        if diff.parameters.required_changed:
            report.migration_notes.append("Required parameters changed - update request validation")

        if diff.auth.modified:
            report.migration_notes.append("Authentication schemes modified - update security configurations")

        return report

    def _compare_operation_parameters(
        self,
        path_key: str,
        method: str,
        old_operation: Dict[str, Any],
        new_operation: Dict[str, Any],
        parameters: ParameterChanges
    ) -> List[SpecChange]:
        """Match parameters by (name, in) and record added, removed and modified ones."""
        changes: List[SpecChange] = []
        old_params = self._index_parameters(old_operation.get("parameters") or [])
        new_params = self._index_parameters(new_operation.get("parameters") or [])
        base = f"paths.{path_key}.{method}"

        for key, new_param in new_params.items():
            if key in old_params:
                continue
            name, location = key
            required = bool(new_param.get("required"))
            change = SpecChange(
                change_type=ChangeType.FIELD_ADDED,
                path=f"{base}.parameters[{name}]",
                severity=ChangeSeverity.BREAKING if required else ChangeSeverity.MINOR,
                description=f"Added {'required' if required else 'optional'} parameter '{name}' in {location}",
                new_value=new_param,
                field_name=name,
                required=required,
                location="parameter"
            )
            parameters.added.append(ParameterChange(
                endpoint=path_key, method=method, parameter_name=name, location=location,
                change_type=ChangeType.FIELD_ADDED, changes=[change], new_parameter=new_param))
            changes.append(change)

        for key, old_param in old_params.items():
            name, location = key
            new_param = new_params.get(key)
            if new_param is None:
                change = SpecChange(
                    change_type=ChangeType.FIELD_REMOVED,
                    path=f"{base}.parameters[{name}]",
                    severity=ChangeSeverity.BREAKING,
                    description=f"Removed parameter '{name}' from {location}",
                    old_value=old_param,
                    field_name=name,
                    required=bool(old_param.get("required")),
                    location="parameter"
                )
                parameters.removed.append(ParameterChange(
                    endpoint=path_key, method=method, parameter_name=name, location=location,
                    change_type=ChangeType.FIELD_REMOVED, changes=[change], old_parameter=old_param))
                changes.append(change)
                continue

            param_changes = self.compare_parameters(old_param, new_param, f"{base}.parameters[{name}]")
            if not param_changes:
                continue

            param_change = ParameterChange(
                endpoint=path_key, method=method, parameter_name=name, location=location,
                change_type=ChangeType.TYPE_CHANGED, changes=param_changes,
                old_parameter=old_param, new_parameter=new_param)
            parameters.modified.append(param_change)
            if any(c.change_type == ChangeType.REQUIRED_CHANGED for c in param_changes):
                parameters.required_changed.append(param_change)
            if any(c.path.endswith(".schema.type") for c in param_changes):
                parameters.type_changed.append(param_change)
            changes.extend(param_changes)

        return changes

    def _compare_request_bodies(
        self,
        old_body: Optional[Dict[str, Any]],
        new_body: Optional[Dict[str, Any]],
        base_path: str
    ) -> List[SpecChange]:
        changes: List[SpecChange] = []
        if not old_body and not new_body:
            return changes

        if not old_body:
            required = bool(new_body.get("required"))
            changes.append(SpecChange(
                change_type=ChangeType.FIELD_ADDED,
                path=base_path,
                severity=ChangeSeverity.BREAKING if required else ChangeSeverity.MINOR,
                description=f"Added {'required' if required else 'optional'} request body",
                new_value=new_body,
                required=required,
                location="request"
            ))
            return changes

        if not new_body:
            changes.append(SpecChange(
                change_type=ChangeType.FIELD_REMOVED,
                path=base_path,
                severity=ChangeSeverity.BREAKING,
                description="Removed request body",
                old_value=old_body,
                location="request"
            ))
            return changes

        if bool(old_body.get("required")) != bool(new_body.get("required")):
            required = bool(new_body.get("required"))
            changes.append(SpecChange(
                change_type=ChangeType.REQUIRED_CHANGED,
                path=f"{base_path}.required",
                severity=ChangeSeverity.BREAKING if required else ChangeSeverity.MINOR,
                description=f"Request body is now {'required' if required else 'optional'}",
                old_value=bool(old_body.get("required")),
                new_value=required,
                required=required,
                location="request"
            ))

        old_schema = self._content_schema(old_body)
        new_schema = self._content_schema(new_body)
        if old_schema is not None and new_schema is not None:
            changes.extend(self.compare_schemas(old_schema, new_schema, f"{base_path}.schema", location="request"))

        return changes

    def _compare_responses(
        self,
        old_responses: Dict[str, Any],
        new_responses: Dict[str, Any],
        base_path: str
    ) -> List[SpecChange]:
        changes: List[SpecChange] = []
        # Unquoted YAML status codes load as int keys
        old_responses = {str(code): response for code, response in old_responses.items()}
        new_responses = {str(code): response for code, response in new_responses.items()}
        old_code = self._primary_success_code(old_responses)
        new_code = self._primary_success_code(new_responses)

        if old_code is not None and new_code is not None and old_code != new_code:
            changes.append(SpecChange(
                change_type=ChangeType.STATUS_CODE_CHANGED,
                path=base_path,
                severity=ChangeSeverity.BREAKING,
                description=f"Success status code changed from {old_code} to {new_code}",
                old_value=old_code,
                new_value=new_code,
                location="response"
            ))
            return changes

        if old_code is not None and old_code == new_code:
            old_schema = self._content_schema(old_responses.get(str(old_code)))
            new_schema = self._content_schema(new_responses.get(str(new_code)))
            if old_schema is not None and new_schema is not None:
                changes.extend(self.compare_schemas(
                    old_schema, new_schema, f"{base_path}.{old_code}.schema", location="response"))

        return changes

    def _record_endpoint(
        self,
        bucket: List[EndpointChange],
        all_changes: List[SpecChange],
        path_key: str,
        method: str,
        change_type: str,
        description: str,
        old_operation: Optional[Dict[str, Any]] = None,
        new_operation: Optional[Dict[str, Any]] = None
    ) -> None:
        added = change_type == "added"
        change = SpecChange(
            change_type=ChangeType.FIELD_ADDED if added else ChangeType.FIELD_REMOVED,
            path=f"paths.{path_key}.{method}",
            severity=ChangeSeverity.MINOR if added else ChangeSeverity.BREAKING,
            description=description,
            old_value=old_operation,
            new_value=new_operation,
            affected_endpoints=(f"{method.upper()} {path_key}",)
        )
        bucket.append(EndpointChange(
            method=method,
            path=path_key,
            change_type=change_type,
            changes=[change],
            old_operation=old_operation,
            new_operation=new_operation
        ))
        all_changes.append(change)

    def _generate_summary(
        self,
        all_changes: List[SpecChange],
        endpoints: EndpointChanges,
        schemas: ComponentChanges
    ) -> DiffSummary:
        def count(severity: ChangeSeverity) -> int:
            return sum(1 for c in all_changes if c.severity == severity)

        return DiffSummary(
            total_changes=len(all_changes),
            breaking_changes=count(ChangeSeverity.BREAKING),
            major_changes=count(ChangeSeverity.MAJOR),
            minor_changes=count(ChangeSeverity.MINOR),
            patch_changes=count(ChangeSeverity.PATCH),
            endpoints_added=len(endpoints.added),
            endpoints_removed=len(endpoints.removed),
            endpoints_modified=len(endpoints.modified),
            schemas_added=len(schemas.added),
            schemas_removed=len(schemas.removed),
            schemas_modified=len(schemas.modified)
        )

    @staticmethod
    def _get_http_methods(path_item: Any) -> List[str]:
        if not isinstance(path_item, dict):
            return []
        return [m for m in HTTP_METHODS if isinstance(path_item.get(m), dict)]

    @staticmethod
    def _index_parameters(params: List[Dict[str, Any]]) -> Dict[Tuple[str, str], Dict[str, Any]]:
        indexed = {}
        for param in params:
            if not isinstance(param, dict):
                continue
            name = param.get("name") or param.get("$ref")
            if name:
                indexed[(name, param.get("in", "ref"))] = param
        return indexed

    @staticmethod
    def _content_schema(body: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Schema of the JSON media type, or of the first declared media type."""
        if not isinstance(body, dict):
            return None
        content = body.get("content") or {}
        media = content.get("application/json")
        if media is None and content:
            media = next(iter(content.values()))
        if isinstance(media, dict):
            return media.get("schema")
        return None

    @staticmethod
    def _primary_success_code(responses: Dict[str, Any]) -> Optional[int]:
        codes = sorted(int(code) for code in responses if str(code).isdigit() and 200 <= int(code) < 300)
        return codes[0] if codes else None

    @staticmethod
    def _enum_values(values: Any) -> Set[str]:
        """Order-insensitive form of an enum, tolerant of unhashable members."""
        if not isinstance(values, list):
            values = [values]
        return {json.dumps(value, sort_keys=True, default=str) for value in values}

    @staticmethod
    def _field_from_path(base_path: str) -> Optional[str]:
        marker = ".properties."
        if marker in base_path:
            return base_path.rsplit(marker, 1)[1].split(".", 1)[0]
        return None

    @staticmethod
    def _info(spec: Dict[str, Any]) -> Dict[str, Any]:
        return spec.get("info") or {}

    @staticmethod
    def _components(spec: Dict[str, Any]) -> Dict[str, Any]:
        return spec.get("components") or {}


def compare_spec_files(
    old_spec_path: str,
    new_spec_path: str,
    options: Optional[ComparisonOptions] = None
) -> SpecDiff:
    """Load two specification files and compare them."""
    differ = SpecDiffer(options)
    old_result = differ.load_spec(old_spec_path)
    new_result = differ.load_spec(new_spec_path)
    return differ.compare_specs(old_result.spec, new_result.spec)
