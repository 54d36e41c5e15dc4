"""Unit tests for the specification differ and loader."""

import copy
import json

import pytest
import yaml

from api_healer.core.exceptions import SpecLoadError
from api_healer.core.models import ChangeSeverity, ChangeType, ComparisonOptions
from api_healer.services.spec_differ import SpecDiffer, SpecLoader, compare_spec_files


def make_spec(paths=None, schemas=None, security_schemes=None, version="1.0.0"):
    spec = {
        "openapi": "3.0.3",
        "info": {"title": "Users API", "version": version},
        "paths": paths or {},
    }
    components = {}
    if schemas is not None:
        components["schemas"] = schemas
    if security_schemes is not None:
        components["securitySchemes"] = security_schemes
    if components:
        spec["components"] = components
    return spec


USER_SCHEMA = {
    "type": "object",
    "required": ["user_id"],
    "properties": {
        "user_id": {"type": "integer"},
        "email": {"type": "string", "format": "email"},
    },
}


def users_paths():
    return {
        "/users": {
            "get": {
                "summary": "List users",
                "parameters": [{"name": "limit", "in": "query", "schema": {"type": "integer"}}],
                "responses": {
                    "200": {
                        "description": "OK",
                        "content": {"application/json": {
                            "schema": {"type": "array", "items": {"$ref": "#/components/schemas/User"}}
                        }},
                    }
                },
            }
        }
    }


class TestEndpointChanges:
    """Test endpoint level diffing."""

    def setup_method(self):
        self.differ = SpecDiffer()

    def test_removed_endpoint_is_breaking(self):
        """Dropping GET /users yields exactly one breaking removal."""
        old_spec = make_spec({"/users": {"get": {"responses": {"200": {"description": "OK"}}}}})
        new_spec = make_spec({})

        diff = self.differ.compare_specs(old_spec, new_spec)

        assert len(diff.all_changes) == 1
        change = diff.all_changes[0]
        assert change.change_type == ChangeType.FIELD_REMOVED
        assert change.severity == ChangeSeverity.BREAKING
        assert change.affected_endpoints == ("GET /users",)
        assert len(diff.endpoints.removed) == 1
        assert diff.is_backward_compatible is False

    def test_added_endpoint_is_minor(self):
        """New endpoints are minor and keep the diff backward compatible."""
        old_spec = make_spec({})
        new_spec = make_spec({"/health": {"get": {"responses": {"200": {"description": "OK"}}}}})

        diff = self.differ.compare_specs(old_spec, new_spec)

        assert diff.endpoints.added[0].key == "GET /health"
        assert diff.all_changes[0].severity == ChangeSeverity.MINOR
        assert diff.is_backward_compatible is True

    def test_diff_is_antisymmetric_for_endpoints(self):
        """An endpoint added in (A, B) is removed in (B, A)."""
        spec_a = make_spec({"/users": {"get": {"responses": {"200": {"description": "OK"}}}}})
        spec_b = make_spec({
            "/users": {"get": {"responses": {"200": {"description": "OK"}}}},
            "/orders": {"post": {"responses": {"201": {"description": "Created"}}}},
        })

        forward = self.differ.compare_specs(spec_a, spec_b)
        backward = self.differ.compare_specs(spec_b, spec_a)

        assert [e.key for e in forward.endpoints.added] == ["POST /orders"]
        assert [e.key for e in backward.endpoints.removed] == ["POST /orders"]
        assert forward.endpoints.removed == []
        assert backward.endpoints.added == []

    def test_identical_specs_have_no_changes(self):
        """Diffing a spec against itself reports nothing."""
        spec = make_spec(users_paths(), schemas={"User": USER_SCHEMA})

        diff = self.differ.compare_specs(spec, copy.deepcopy(spec))

        assert diff.all_changes == []
        assert diff.summary.total_changes == 0
        assert diff.is_backward_compatible is True

    def test_removed_method_on_shared_path(self):
        """Removing one method of a path is reported as an endpoint removal."""
        old_spec = make_spec({"/users": {
            "get": {"responses": {"200": {"description": "OK"}}},
            "delete": {"responses": {"204": {"description": "Gone"}}},
        }})
        new_spec = make_spec({"/users": {"get": {"responses": {"200": {"description": "OK"}}}}})

        diff = self.differ.compare_specs(old_spec, new_spec)

        assert [e.key for e in diff.endpoints.removed] == ["DELETE /users"]

    def test_success_status_code_change(self):
        """Changing the primary 2xx response is a breaking status code change."""
        old_spec = make_spec({"/users": {"post": {"responses": {"200": {"description": "OK"}}}}})
        new_spec = make_spec({"/users": {"post": {"responses": {"201": {"description": "Created"}}}}})

        diff = self.differ.compare_specs(old_spec, new_spec)

        status_changes = [c for c in diff.all_changes if c.change_type == ChangeType.STATUS_CODE_CHANGED]
        assert len(status_changes) == 1
        assert status_changes[0].old_value == 200
        assert status_changes[0].new_value == 201
        assert status_changes[0].path == "paths./users.post.responses"
        assert diff.endpoints.modified[0].key == "POST /users"

    def test_unquoted_yaml_status_codes(self):
        """Response schemas keyed by integer status codes are still compared."""
        template = """
openapi: 3.0.3
info: {title: Users API, version: 1.0.0}
paths:
  /users/{id}:
    get:
      responses:
        200:
          description: OK
          content:
            application/json:
              schema:
                type: object
                properties:
                  FIELD: {type: integer}
"""
        old_spec = yaml.safe_load(template.replace("FIELD", "user_id"))
        new_spec = yaml.safe_load(template.replace("FIELD", "userId"))

        diff = self.differ.compare_specs(old_spec, new_spec)

        removed = [c for c in diff.all_changes if c.change_type == ChangeType.FIELD_REMOVED]
        added = [c for c in diff.all_changes if c.change_type == ChangeType.FIELD_ADDED]
        assert [c.field_name for c in removed] == ["user_id"]
        assert removed[0].severity == ChangeSeverity.BREAKING
        assert removed[0].location == "response"
        assert [c.field_name for c in added] == ["userId"]
        assert diff.is_backward_compatible is False


class TestParameterChanges:
    """Test parameter diffing rules."""

    def setup_method(self):
        self.differ = SpecDiffer()

    def _spec(self, parameters):
        return make_spec({"/users": {"get": {
            "parameters": parameters,
            "responses": {"200": {"description": "OK"}},
        }}})

    def test_required_parameter_added_is_breaking(self):
        old_spec = self._spec([])
        new_spec = self._spec([{"name": "tenant", "in": "header", "required": True}])

        diff = self.differ.compare_specs(old_spec, new_spec)

        assert len(diff.parameters.added) == 1
        assert diff.all_changes[0].severity == ChangeSeverity.BREAKING
        assert diff.all_changes[0].path == "paths./users.get.parameters[tenant]"

    def test_optional_parameter_added_is_minor(self):
        old_spec = self._spec([])
        new_spec = self._spec([{"name": "page", "in": "query"}])

        diff = self.differ.compare_specs(old_spec, new_spec)

        assert diff.all_changes[0].severity == ChangeSeverity.MINOR
        assert diff.is_backward_compatible is True

    def test_parameter_removed_is_breaking(self):
        old_spec = self._spec([{"name": "limit", "in": "query"}])
        new_spec = self._spec([])

        diff = self.differ.compare_specs(old_spec, new_spec)

        assert len(diff.parameters.removed) == 1
        assert diff.all_changes[0].severity == ChangeSeverity.BREAKING

    def test_required_flag_flips(self):
        """Flipping to required is breaking; flipping to optional is minor."""
        optional = self._spec([{"name": "limit", "in": "query", "required": False}])
        required = self._spec([{"name": "limit", "in": "query", "required": True}])

        to_required = self.differ.compare_specs(optional, required)
        to_optional = self.differ.compare_specs(required, optional)

        assert to_required.all_changes[0].severity == ChangeSeverity.BREAKING
        assert to_optional.all_changes[0].severity == ChangeSeverity.MINOR
        assert len(to_required.parameters.required_changed) == 1


class TestSchemaChanges:
    """Test component schema diffing."""

    def setup_method(self):
        self.differ = SpecDiffer()

    def test_property_rename_shows_as_removal_and_addition(self):
        """Renaming a property is a breaking removal plus a minor addition."""
        new_schema = copy.deepcopy(USER_SCHEMA)
        new_schema["required"] = ["userId"]
        new_schema["properties"]["userId"] = new_schema["properties"].pop("user_id")

        diff = self.differ.compare_specs(
            make_spec(users_paths(), schemas={"User": USER_SCHEMA}),
            make_spec(users_paths(), schemas={"User": new_schema}))

        removed = [c for c in diff.all_changes if c.change_type == ChangeType.FIELD_REMOVED]
        added = [c for c in diff.all_changes if c.change_type == ChangeType.FIELD_ADDED]
        assert removed[0].field_name == "user_id"
        assert removed[0].severity == ChangeSeverity.BREAKING
        assert added[0].field_name == "userId"
        assert added[0].required is True
        assert removed[0].affected_endpoints == ("GET /users",)
        assert len(diff.schemas.modified) == 1

    def test_type_change_is_breaking(self):
        new_schema = copy.deepcopy(USER_SCHEMA)
        new_schema["properties"]["user_id"] = {"type": "string"}

        diff = self.differ.compare_specs(
            make_spec(users_paths(), schemas={"User": USER_SCHEMA}),
            make_spec(users_paths(), schemas={"User": new_schema}))

        change = diff.all_changes[0]
        assert change.change_type == ChangeType.TYPE_CHANGED
        assert change.severity == ChangeSeverity.BREAKING
        assert change.field_name == "user_id"

    def test_enum_change_is_breaking(self):
        old_schema = {"type": "object", "properties": {"role": {"type": "string", "enum": ["admin", "user"]}}}
        new_schema = {"type": "object", "properties": {"role": {"type": "string", "enum": ["admin"]}}}

        diff = self.differ.compare_specs(
            make_spec(schemas={"Role": old_schema}), make_spec(schemas={"Role": new_schema}))

        assert diff.all_changes[0].change_type == ChangeType.ENUM_CHANGED
        assert diff.all_changes[0].severity == ChangeSeverity.BREAKING

    def test_enum_reordering_is_not_a_change(self):
        """Only the set of enum values matters, including unhashable members."""
        old_schema = {"type": "object", "properties": {
            "role": {"type": "string", "enum": ["admin", "user"]},
            "scope": {"enum": [{"level": 1}, {"level": 2}]},
        }}
        new_schema = {"type": "object", "properties": {
            "role": {"type": "string", "enum": ["user", "admin"]},
            "scope": {"enum": [{"level": 2}, {"level": 1}]},
        }}

        diff = self.differ.compare_specs(
            make_spec(schemas={"Role": old_schema}), make_spec(schemas={"Role": new_schema}))

        assert diff.all_changes == []

    def test_new_required_field(self):
        """A field becoming required is breaking."""
        new_schema = copy.deepcopy(USER_SCHEMA)
        new_schema["required"] = ["user_id", "email"]

        diff = self.differ.compare_specs(
            make_spec(schemas={"User": USER_SCHEMA}), make_spec(schemas={"User": new_schema}))

        change = diff.all_changes[0]
        assert change.change_type == ChangeType.REQUIRED_CHANGED
        assert change.field_name == "email"
        assert change.severity == ChangeSeverity.BREAKING

    def test_schema_removed(self):
        diff = self.differ.compare_specs(
            make_spec(schemas={"User": USER_SCHEMA}), make_spec(schemas={}))

        assert len(diff.schemas.removed) == 1
        assert diff.is_backward_compatible is False


class TestAuthAndMetadataChanges:
    """Test security scheme and info block diffing."""

    def setup_method(self):
        self.differ = SpecDiffer()

    def test_auth_scheme_type_change(self):
        paths = {"/users": {"get": {"security": [{"main": []}], "responses": {"200": {"description": "OK"}}}}}
        old_spec = make_spec(paths, security_schemes={"main": {"type": "apiKey", "in": "header", "name": "X-Key"}})
        new_spec = make_spec(paths, security_schemes={"main": {"type": "http", "scheme": "bearer"}})

        diff = self.differ.compare_specs(old_spec, new_spec)

        assert len(diff.auth.modified) == 1
        change = diff.auth.modified[0].changes[0]
        assert change.severity == ChangeSeverity.BREAKING
        assert change.affected_endpoints == ("GET /users",)

    def test_auth_scheme_removed_is_breaking(self):
        """Affected endpoints come from the old document's security requirements."""
        paths = {"/users": {"get": {"security": [{"main": []}], "responses": {"200": {"description": "OK"}}}}}
        old_spec = make_spec(paths, security_schemes={"main": {"type": "http", "scheme": "bearer"}})
        new_spec = make_spec(paths, security_schemes={})

        diff = self.differ.compare_specs(old_spec, new_spec)

        assert len(diff.auth.removed) == 1
        change = diff.auth.removed[0].changes[0]
        assert change.change_type == ChangeType.FIELD_REMOVED
        assert change.severity == ChangeSeverity.BREAKING
        assert change.affected_endpoints == ("GET /users",)
        assert diff.is_backward_compatible is False

    def test_auth_scheme_added_is_minor(self):
        diff = self.differ.compare_specs(
            make_spec(security_schemes={}), make_spec(security_schemes={"oauth": {"type": "oauth2"}}))

        assert diff.auth.added[0].changes[0].severity == ChangeSeverity.MINOR

    def test_version_change_is_patch(self):
        diff = self.differ.compare_specs(make_spec(version="1.0.0"), make_spec(version="1.1.0"))

        assert diff.old_version == "1.0.0"
        assert diff.new_version == "1.1.0"
        assert diff.metadata["version"].severity == ChangeSeverity.PATCH

    def test_ignore_description_changes(self):
        old_spec = make_spec({"/users": {"get": {"summary": "a", "responses": {"200": {"description": "OK"}}}}})
        new_spec = make_spec({"/users": {"get": {"summary": "b", "responses": {"200": {"description": "OK"}}}}})

        diff = SpecDiffer(ComparisonOptions(ignore_description_changes=True)).compare_specs(old_spec, new_spec)

        assert diff.all_changes == []


class TestDiffReport:
    """Test the human-readable digest."""

    def test_report_lists_breaking_changes(self):
        differ = SpecDiffer()
        diff = differ.compare_specs(
            make_spec({"/users": {"get": {"responses": {"200": {"description": "OK"}}}}}), make_spec({}))

        report = differ.generate_diff_report(diff)

        assert len(report.breaking_changes) == 1
        assert "Backward compatible: No" in report.summary
        assert any("endpoint(s) removed" in r for r in report.recommendations)


class TestSpecLoader:
    """Test specification loading."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "api.yaml"
        path.write_text(yaml.safe_dump(make_spec(users_paths())), encoding="utf-8")

        result = SpecLoader().load(str(path))

        assert result.format == "yaml"
        assert "/users" in result.spec["paths"]
        assert result.size > 0

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "api.txt"
        path.write_text("{}", encoding="utf-8")

        with pytest.raises(SpecLoadError):
            SpecLoader().load(str(path))

    def test_missing_required_fields(self, tmp_path):
        path = tmp_path / "api.json"
        path.write_text(json.dumps({"openapi": "3.0.0"}), encoding="utf-8")

        with pytest.raises(SpecLoadError) as exc_info:
            SpecLoader().load(str(path))
        assert "info" in exc_info.value.message

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "api.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(SpecLoadError):
            SpecLoader().load(str(path))

    def test_compare_spec_files(self, tmp_path):
        old_path = tmp_path / "old.json"
        new_path = tmp_path / "new.json"
        old_path.write_text(json.dumps(make_spec(users_paths())), encoding="utf-8")
        new_path.write_text(json.dumps(make_spec({})), encoding="utf-8")

        diff = compare_spec_files(str(old_path), str(new_path))

        assert diff.summary.endpoints_removed == 1
