"""Unit tests for repair prompt assembly."""

import pytest

from api_healer.core.models import ChangeSeverity, ChangeType, RegenerationContext, SpecChange
from api_healer.services.failure_classifier import FailureClassifier
from api_healer.services.prompt_assembler import FEW_SHOT_EXAMPLES, PromptAssembler


def rename_changes():
    return [
        SpecChange(ChangeType.FIELD_ADDED, "components.schemas.User.properties.userId",
                   ChangeSeverity.MINOR, "Added property 'userId'",
                   new_value={"type": "integer"}, field_name="userId", location="schema"),
        SpecChange(ChangeType.FIELD_REMOVED, "components.schemas.User.properties.user_id",
                   ChangeSeverity.BREAKING, "Removed property 'user_id'",
                   old_value={"type": "integer"}, field_name="user_id", location="schema"),
    ]


@pytest.fixture
def regeneration_context(failed_test_case):
    analysis = FailureClassifier().analyze(failed_test_case)
    return RegenerationContext(
        test_case=failed_test_case,
        analysis=analysis,
        spec_changes=rename_changes(),
        relevant_spec={"/users/{id}": {"get": {"responses": {"200": {"description": "OK"}}}}},
        few_shot_count=2
    )


class TestBuildRepairPrompt:
    """Test the full repair prompt."""

    def setup_method(self):
        self.assembler = PromptAssembler()

    def test_prompt_contains_all_context(self, regeneration_context):
        prompt = self.assembler.build_repair_prompt(regeneration_context)

        assert "expect(body.user_id).toBe(42);" in prompt
        assert "**Failure Kind:** field_missing" in prompt
        assert "**Field:** user_id" in prompt
        assert "Property 'user_id' is missing in response" in prompt
        assert "**Endpoint:** GET /users/42" in prompt
        assert '"/users/{id}"' in prompt
        assert self.assembler.validate() == []

    def test_breaking_changes_listed_first(self, regeneration_context):
        prompt = self.assembler.build_repair_prompt(regeneration_context)

        breaking = prompt.index("**Breaking Changes:**")
        detailed = prompt.index("**Detailed Changes:**")
        assert breaking < detailed
        assert "- Removed property 'user_id' (components.schemas.User.properties.user_id)" in prompt
        assert "*Added:*" in prompt and "*Removed:*" in prompt
        assert '  New: {"type": "integer"}' in prompt

    def test_few_shot_count_is_bounded(self, regeneration_context):
        """Only the requested number of examples is included."""
        prompt = self.assembler.build_repair_prompt(regeneration_context)

        assert "## Example 1:" in prompt
        assert "## Example 2:" in prompt
        assert "## Example 3:" not in prompt
        assert self.assembler.get_state()["few_shot_count"] == 2

    def test_minimal_prompt_has_no_examples(self, regeneration_context):
        prompt = self.assembler.build_minimal_prompt(regeneration_context)

        assert "# EXAMPLES" not in prompt
        assert "# YOUR TASK" in prompt

    def test_source_braces_are_not_treated_as_placeholders(self, regeneration_context):
        """Source text containing placeholder-like tokens is inserted verbatim."""
        regeneration_context.test_case.source_code += "\n// {api_changes}\n"

        prompt = self.assembler.build_minimal_prompt(regeneration_context)

        assert "// {api_changes}" in prompt

    def test_no_changes_message(self, regeneration_context):
        regeneration_context.spec_changes = []

        prompt = self.assembler.build_minimal_prompt(regeneration_context)

        assert "No specification changes were detected for this endpoint." in prompt


class TestPromptParts:
    """Test individual assembler operations."""

    def setup_method(self):
        self.assembler = PromptAssembler()

    def test_validate_reports_missing_parts(self):
        self.assembler.add_original_test_code("test('x', async () => {});")

        assert self.assembler.validate() == ["failure_information", "api_changes", "relevant_spec"]

    def test_custom_section_replaces_template(self, regeneration_context):
        self.assembler.add_custom_section("task", "# TASK\n\nFix it.")

        prompt = self.assembler.build_repair_prompt(regeneration_context)

        assert prompt.endswith("# TASK\n\nFix it.")
        assert "# YOUR TASK" not in prompt

    def test_unknown_custom_section(self):
        with pytest.raises(ValueError):
            self.assembler.add_custom_section("appendix", "text")

    def test_few_shot_examples_clamped_to_library(self):
        self.assembler.add_few_shot_examples(50)

        assert len(self.assembler.few_shot_examples) == len(FEW_SHOT_EXAMPLES)

        self.assembler.add_few_shot_examples(-1)
        assert self.assembler.few_shot_examples == []

    def test_token_estimate(self):
        assert self.assembler.estimate_token_count("a" * 10) == 3
        assert self.assembler.estimate_token_count("") == 0
