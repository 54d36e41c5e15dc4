"""
Prompt Assembler for AI-powered test repair.

Builds the structured repair request sent to the completion service:
original source, failure summary, itemized specification changes, the
relevant specification excerpt, fixed requirements and a bounded number of
few-shot repair examples from a static library.

Usage:
    assembler = PromptAssembler()
    prompt = assembler.build_repair_prompt(context)
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..core.models import (
    ChangeType,
    FailureAnalysis,
    RegenerationContext,
    SpecChange
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FewShotExample:
    """A worked repair: failing test, failure, API changes and the fix."""
    description: str
    original_test: str
    failure: str
    api_changes: str
    repaired_test: str


class PromptSections:
    """
    Reusable prompt building blocks.

    The base template is composed from these sections, so any section can be
    swapped out with ``PromptAssembler.add_custom_section``.
    """

    # ═══════════════════════════════════════════════════════════════════════════
    # TEMPLATE SECTIONS
    # ═══════════════════════════════════════════════════════════════════════════

    HEADER = """You are an expert test engineer specializing in API testing with Playwright.

Your task is to repair a failing test based on API specification changes."""

    CONTEXT = """# CONTEXT

## Original Test Code
```typescript
{original_test_code}
```

## Test Failure
{failure_information}

## API Changes
{api_changes}

## Relevant API Specification
```json
{relevant_spec}
```"""

    REQUIREMENTS = """# REQUIREMENTS

1. **Preserve Test Intent**: The repaired test must verify the same business logic as the original
2. **Update API Calls**: Adapt to new endpoints, parameters, and request/response formats
3. **Maintain Code Quality**: Follow Playwright best practices and the existing code style
4. **Handle All Changes**: Address all breaking changes mentioned in the API changes section
5. **Keep Test Structure**: Maintain the same test organization and flow unless changes require restructuring
6. **Use TypeScript**: Ensure all code is valid TypeScript with proper typing
7. **Error Handling**: Add appropriate error handling if the API changes introduce new error cases"""

    OUTPUT = """# OUTPUT FORMAT

Return ONLY the complete repaired test code in TypeScript.
Do NOT include:
- Explanations or descriptions
- Comments about what changed
- Any text before or after the code

The output should be valid TypeScript that can be directly written to a file."""

    TASK = """# YOUR TASK

Repair the failing test based on the context provided above.
Ensure the test maintains its original intent while adapting to the API changes."""

    ORDER = ("header", "context", "requirements", "output", "examples", "task")

    @classmethod
    def get(cls, name: str) -> str:
        return getattr(cls, name.upper())


SYSTEM_PROMPT = (
    "You are an expert test engineer who repairs Playwright API tests after API "
    "specification changes. Reply with the complete repaired test file only."
)

REQUIRED_FIELDS = ("original_test_code", "failure_information", "api_changes", "relevant_spec")
PLACEHOLDER_PATTERN = re.compile(r"\{(" + "|".join(REQUIRED_FIELDS) + r")\}")


FEW_SHOT_EXAMPLES: List[FewShotExample] = [
    FewShotExample(
        description="Endpoint path change and response structure update",
        original_test="""import { test, expect } from '@playwright/test';

test('should get user by ID', async ({ request }) => {
  const response = await request.get('/api/users/123');
  expect(response.status()).toBe(200);

  const data = await response.json();
  expect(data.id).toBe(123);
  expect(data.name).toBeDefined();
});""",
        failure="""Error: 404 Not Found at /api/users/123
Expected status 200, received 404""",
        api_changes="""- Endpoint changed from /api/users/{id} to /api/v2/users/{id}
- Response now includes user data wrapped in a 'data' field
- Added 'version' field to response""",
        repaired_test="""import { test, expect } from '@playwright/test';

test('should get user by ID', async ({ request }) => {
  const response = await request.get('/api/v2/users/123');
  expect(response.status()).toBe(200);

  const body = await response.json();
  expect(body.data.id).toBe(123);
  expect(body.data.name).toBeDefined();
  expect(body.version).toBeDefined();
});"""
    ),
    FewShotExample(
        description="Required field added to request body",
        original_test="""import { test, expect } from '@playwright/test';

test('should create new post', async ({ request }) => {
  const response = await request.post('/api/posts', {
    data: {
      title: 'Test Post',
      content: 'This is test content'
    }
  });

  expect(response.status()).toBe(201);
  const post = await response.json();
  expect(post.title).toBe('Test Post');
});""",
        failure="""Error: 400 Bad Request
Missing required field: authorId""",
        api_changes="""- Added required field 'authorId' to POST /api/posts request body
- Field must be a valid user ID (number)""",
        repaired_test="""import { test, expect } from '@playwright/test';

test('should create new post', async ({ request }) => {
  const response = await request.post('/api/posts', {
    data: {
      title: 'Test Post',
      content: 'This is test content',
      authorId: 1
    }
  });

  expect(response.status()).toBe(201);
  const post = await response.json();
  expect(post.title).toBe('Test Post');
  expect(post.authorId).toBe(1);
});"""
    ),
    FewShotExample(
        description="Authentication requirement added",
        original_test="""import { test, expect } from '@playwright/test';

test('should list all products', async ({ request }) => {
  const response = await request.get('/api/products');
  expect(response.status()).toBe(200);

  const products = await response.json();
  expect(Array.isArray(products)).toBe(true);
});""",
        failure="""Error: 401 Unauthorized
Authentication required""",
        api_changes="""- Endpoint /api/products now requires authentication
- Must include 'Authorization: Bearer <token>' header""",
        repaired_test="""import { test, expect } from '@playwright/test';

test('should list all products', async ({ request }) => {
  const response = await request.get('/api/products', {
    headers: {
      'Authorization': 'Bearer test-token-123'
    }
  });
  expect(response.status()).toBe(200);

  const products = await response.json();
  expect(Array.isArray(products)).toBe(true);
});"""
    ),
    FewShotExample(
        description="HTTP method change and parameter location change",
        original_test="""import { test, expect } from '@playwright/test';

test('should delete user', async ({ request }) => {
  const response = await request.delete('/api/users/456');
  expect(response.status()).toBe(204);
});""",
        failure="""Error: 405 Method Not Allowed
DELETE method not supported""",
        api_changes="""- Changed from DELETE to POST method
- User ID now passed in request body instead of path
- Endpoint changed to /api/users/delete""",
        repaired_test="""import { test, expect } from '@playwright/test';

test('should delete user', async ({ request }) => {
  const response = await request.post('/api/users/delete', {
    data: {
      userId: 456
    }
  });
  expect(response.status()).toBe(200);
});"""
    ),
    FewShotExample(
        description="Query parameter renamed and response wrapped",
        original_test="""import { test, expect } from '@playwright/test';

test('should search products', async ({ request }) => {
  const response = await request.get('/api/products/search?q=laptop');
  expect(response.status()).toBe(200);

  const results = await response.json();
  expect(results.length).toBeGreaterThan(0);
});""",
        failure="""Error: 400 Bad Request
Unknown query parameter: q
Expected: query""",
        api_changes="""- Query parameter renamed from 'q' to 'query'
- Minimum length validation added (3 characters)
- Results now in 'items' field instead of root array""",
        repaired_test="""import { test, expect } from '@playwright/test';

test('should search products', async ({ request }) => {
  const response = await request.get('/api/products/search?query=laptop');
  expect(response.status()).toBe(200);

  const body = await response.json();
  expect(body.items.length).toBeGreaterThan(0);
});"""
    ),
]


def format_few_shot_examples(examples: Sequence[FewShotExample]) -> str:
    """Render examples as numbered markdown blocks."""
    blocks = []
    for index, example in enumerate(examples, start=1):
        blocks.append(
            f"## Example {index}: {example.description}\n\n"
            f"### Original Test\n```typescript\n{example.original_test}\n```\n\n"
            f"### Failure\n{example.failure}\n\n"
            f"### API Changes\n{example.api_changes}\n\n"
            f"### Repaired Test\n```typescript\n{example.repaired_test}\n```"
        )
    return "\n\n".join(blocks)


class PromptAssembler:
    """
    Builds repair prompts from a regeneration context.

    The assembler keeps the parts of the prompt being built so that
    ``validate`` and ``estimate_token_count`` can inspect them afterwards.
    """

    def __init__(self, max_few_shot: int = len(FEW_SHOT_EXAMPLES)):
        self.max_few_shot = max_few_shot
        self.reset()

    def reset(self) -> None:
        self.original_test_code = ""
        self.failure_information = ""
        self.api_changes = ""
        self.relevant_spec = ""
        self.few_shot_examples: List[FewShotExample] = []
        self.custom_sections: Dict[str, str] = {}

    def build_repair_prompt(self, context: RegenerationContext) -> str:
        """
        Build the full repair prompt, including few-shot examples when enabled.

        Args:
            context: Test case, failure analysis and relevant specification changes

        Returns:
            str: Prompt text ready for the completion service
        """
        custom = dict(self.custom_sections)
        self.reset()
        self.custom_sections = custom

        self._add_context(context)
        if context.include_few_shot:
            self.add_few_shot_examples(context.few_shot_count)

        prompt = self.build()
        logger.debug(f"Built repair prompt for '{context.test_case.name}' "
                     f"({len(prompt)} chars, ~{self.estimate_token_count(prompt)} tokens)")
        return prompt

    def build_minimal_prompt(self, context: RegenerationContext) -> str:
        """Build the repair prompt without few-shot examples."""
        custom = dict(self.custom_sections)
        self.reset()
        self.custom_sections = custom
        self._add_context(context)
        return self.build()

    def add_original_test_code(self, code: str) -> None:
        self.original_test_code = code.strip()

    def add_failure_information(self, analysis: FailureAnalysis, error_message: str = "",
                                stack_trace: Optional[str] = None) -> None:
        details = analysis.details or {}
        parts = [
            f"**Failure Kind:** {analysis.failure_kind.value}",
            f"**Root Cause:** {analysis.root_cause}",
            f"**Confidence:** {analysis.confidence:.2f}",
        ]

        if details.get("actual_status") is not None:
            parts.append(f"**Status Code:** {details['actual_status']}")
        if details.get("expected_status") is not None:
            parts.append(f"**Expected Status:** {details['expected_status']}")
        if details.get("field_name"):
            parts.append(f"**Field:** {details['field_name']}")
        if analysis.suggested_fix:
            parts.append(f"**Suggested Fix:** {analysis.suggested_fix}")

        parts.append("**Error Message:**")
        parts.append(error_message or details.get("clean_message") or "(no message)")

        if stack_trace:
            parts.extend(["", "**Stack Trace:**", "```", stack_trace, "```"])

        self.failure_information = "\n".join(parts)

    def add_spec_changes(self, changes: Sequence[SpecChange], endpoint: Optional[str] = None) -> None:
        """Itemize specification changes, breaking ones listed first."""
        parts = [f"**Endpoint:** {endpoint or 'unknown'}", ""]

        if not changes:
            parts.append("No specification changes were detected for this endpoint.")
            self.api_changes = "\n".join(parts)
            return

        breaking = [c for c in changes if c.is_breaking]
        if breaking:
            parts.append("**Breaking Changes:**")
            parts.extend(f"- {c.description} ({c.path})" for c in breaking)
            parts.append("")

        parts.append("**Detailed Changes:**")
        groups = (
            ("Added", [c for c in changes if c.change_type == ChangeType.FIELD_ADDED]),
            ("Removed", [c for c in changes if c.change_type == ChangeType.FIELD_REMOVED]),
            ("Modified", [c for c in changes
                          if c.change_type not in (ChangeType.FIELD_ADDED, ChangeType.FIELD_REMOVED)]),
        )
        for title, group in groups:
            if not group:
                continue
            parts.extend(["", f"*{title}:*"])
            for change in group:
                marker = " [BREAKING]" if change.is_breaking else ""
                parts.append(f"- {change.path}: {change.description}{marker}")
                if change.old_value is not None and change.change_type != ChangeType.FIELD_ADDED:
                    parts.append(f"  Old: {self._to_json(change.old_value)}")
                if change.new_value is not None and change.change_type != ChangeType.FIELD_REMOVED:
                    parts.append(f"  New: {self._to_json(change.new_value)}")

        self.api_changes = "\n".join(parts)

    def add_relevant_spec_section(self, spec: Any) -> None:
        self.relevant_spec = json.dumps(spec if spec is not None else {}, indent=2, default=str)

    def add_few_shot_examples(self, count: int = 3) -> None:
        count = max(0, min(count, self.max_few_shot))
        self.few_shot_examples = FEW_SHOT_EXAMPLES[:count]

    def add_custom_section(self, name: str, content: str) -> None:
        """Replace one of the template sections (header, requirements, output, task, ...)."""
        if name not in PromptSections.ORDER:
            raise ValueError(f"Unknown prompt section: {name}")
        self.custom_sections[name] = content

    def build(self) -> str:
        sections = []
        for name in PromptSections.ORDER:
            if name in self.custom_sections:
                sections.append(self.custom_sections[name])
            elif name == "examples":
                if self.few_shot_examples:
                    sections.append(f"# EXAMPLES\n\n{format_few_shot_examples(self.few_shot_examples)}")
            else:
                sections.append(PromptSections.get(name))

        values = {name: getattr(self, name) for name in REQUIRED_FIELDS}
        # Single pass, so inserted source text is never rescanned for placeholders
        return PLACEHOLDER_PATTERN.sub(lambda m: values[m.group(1)], "\n\n".join(sections))

    def validate(self) -> List[str]:
        """Names of required prompt parts that are still empty."""
        return [name for name in REQUIRED_FIELDS if not getattr(self, name)]

    def get_state(self) -> Dict[str, Any]:
        return {
            "original_test_code": self.original_test_code,
            "failure_information": self.failure_information,
            "api_changes": self.api_changes,
            "relevant_spec": self.relevant_spec,
            "few_shot_count": len(self.few_shot_examples),
            "custom_sections": sorted(self.custom_sections)
        }

    def estimate_token_count(self, prompt: Optional[str] = None) -> int:
        """Rough token estimate at about four characters per token."""
        text = prompt if prompt is not None else self.build()
        return math.ceil(len(text) / 4)

    def _add_context(self, context: RegenerationContext) -> None:
        test_case = context.test_case
        outcome = test_case.outcome
        endpoint = None
        if test_case.endpoint:
            endpoint = f"{(test_case.method or 'GET').upper()} {test_case.endpoint}"

        self.add_original_test_code(test_case.source_code)
        self.add_failure_information(
            context.analysis,
            error_message=outcome.error_message or "",
            stack_trace=outcome.stack_trace
        )
        self.add_spec_changes(context.spec_changes, endpoint)
        self.add_relevant_spec_section(context.relevant_spec)

    @staticmethod
    def _to_json(value: Any) -> str:
        return json.dumps(value, default=str)
