"""Safety preamble and request pre-validation for agent tasks.

The preamble is prepended to every agent prompt when safety rules are
enforced; the patterns reject obviously dangerous requests before any git
or agent work starts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from task_agent.orchestrator.models import TaskView

SAFETY_RULES = """
## SAFETY RULES - MUST FOLLOW

You are a code assistant that helps with UI and feature development tasks.
Before executing any task, you MUST verify it complies with these rules.

### ALLOWED ACTIONS
- Adding new UI components and pages
- Modifying styles and layouts
- Adding new features that don't affect security
- Refactoring code for readability
- Adding or modifying tests
- Updating text content and copy

### FORBIDDEN ACTIONS - NEVER DO THESE
1. **No secrets exposure**: Never log, print, output, or expose:
   - Environment variables
   - API keys, tokens, or credentials
   - Database or service configuration values
   - Any .env file contents

2. **No security modifications**: Never:
   - Remove or disable authentication
   - Modify auth logic or bypass login
   - Change security rules or permissions
   - Disable CORS or security headers

3. **No destructive operations**: Never:
   - Delete files or directories (except test/temp files you created)
   - Drop databases or collections
   - Remove user data
   - Clear or reset production data

4. **No sensitive file access**: Never read or modify:
   - .env files
   - Credential files (*.pem, *.key, credentials.json)
   - Service account files
   - SSH keys or certificates

5. **No system commands**: Never execute:
   - rm -rf or del commands on important directories
   - Commands that affect system configuration
   - Commands that install global packages
   - Commands that modify git config or credentials

### IF A TASK VIOLATES THESE RULES
If the user's task request would require violating any of these rules:
1. Do NOT execute the forbidden action
2. Explain why the action cannot be performed
3. Suggest a safe alternative if possible

### TASK TO EXECUTE
The following is the user's task request:

"""


@dataclass(frozen=True, slots=True)
class DangerousPattern:
    pattern: re.Pattern[str]
    reason: str


def _rule(expression: str, reason: str) -> DangerousPattern:
    return DangerousPattern(pattern=re.compile(expression, re.IGNORECASE), reason=reason)


DANGEROUS_PATTERNS: tuple[DangerousPattern, ...] = (
    # Secrets/credentials exposure
    _rule(
        r"\b(env|environment)\s*(var|variable)",
        "Requests involving environment variables are not allowed",
    ),
    _rule(
        r"\b(api[_-]?key|secret|token|credential|password)\b",
        "Requests involving secrets or credentials are not allowed",
    ),
    _rule(r"\bprocess\.env\b", "Accessing process.env is not allowed"),
    _rule(r"\bimport\.meta\.env\b", "Accessing import.meta.env is not allowed"),
    _rule(r"\bos\.environ\b", "Accessing os.environ is not allowed"),
    _rule(r"\.env\s*file", "Modifying .env files is not allowed"),
    # Security modifications
    _rule(
        r"\b(remove|disable|bypass|skip)\s*(auth|authentication|login)",
        "Modifying authentication is not allowed",
    ),
    _rule(
        r"\b(remove|disable)\s*(security|protection)",
        "Disabling security features is not allowed",
    ),
    _rule(r"\bfirestore\.?rules\b", "Modifying Firestore rules is not allowed"),
    # Destructive operations
    _rule(
        r"\b(delete|remove|drop)\s*(all|every|\*|database|collection|table)",
        "Bulk deletion operations are not allowed",
    ),
    _rule(r"\brm\s+-rf\b", "Recursive force deletion is not allowed"),
    _rule(r"\bdel\s+/[sq]", "Recursive deletion is not allowed"),
    # System/config modifications
    _rule(r"\bgit\s*(config|credential)", "Modifying git configuration is not allowed"),
    _rule(r"\bnpm\s*(config|set)", "Modifying npm configuration is not allowed"),
    _rule(r"\b(install|add)\s*(-g|--global)", "Installing global packages is not allowed"),
)


def validate_task_safety(title: str, description: str | None = None) -> str | None:
    """Return the rejection reason for a dangerous request, or ``None`` if it looks safe."""

    full_text = f"{title} {description or ''}"
    for rule in DANGEROUS_PATTERNS:
        if rule.pattern.search(full_text):
            return rule.reason
    return None


def build_task_prompt(task: TaskView, *, include_safety_rules: bool = True) -> str:
    """Agent prompt: optional safety preamble, the title, then extra instructions."""

    prompt = task.title
    if task.description:
        prompt += f"\n\nAdditional instructions: {task.description}"
    if include_safety_rules:
        return SAFETY_RULES + prompt
    return prompt
