"""Input validation for branch names, PR titles and identifiers.

Each validator returns None when the input is fine and an error message
otherwise, so bad input is reported before it reaches git or GitHub.
"""

import re
from typing import Optional

MAX_BRANCH_NAME_LENGTH = 255
MAX_PR_TITLE_LENGTH = 500
MAX_IDENTIFIER_LENGTH = 100

FORBIDDEN_BRANCH_SEQUENCES = ["~", "^", ":", "?", "*", "[", "\\", "..", "@{"]

hex_identifier_regex = re.compile(r'^[0-9a-f]{4,40}$')
group_identifier_regex = re.compile(r'^[\w-]+-[0-9a-f]{4,}$')


def _is_control(char: str, allow_newlines: bool = False) -> bool:
    code = ord(char)
    if allow_newlines and char in "\n\r":
        return False
    return code < 32 or code == 127


def validate_branch_name(name: str) -> Optional[str]:
    """Check a branch name against git-check-ref-format rules."""
    if not name:
        return "Branch name cannot be empty"
    if len(name) > MAX_BRANCH_NAME_LENGTH:
        return f"Branch name too long ({len(name)} chars). Maximum is {MAX_BRANCH_NAME_LENGTH} characters."
    if " " in name:
        return "Branch name cannot contain spaces"
    for position, char in enumerate(name):
        if _is_control(char):
            return f"Branch name cannot contain control characters (found at position {position})"
    for sequence in FORBIDDEN_BRANCH_SEQUENCES:
        if sequence in name:
            return f"Branch name cannot contain '{sequence}'"
    if name.startswith("/"):
        return "Branch name cannot start with '/'"
    if name.endswith("/"):
        return "Branch name cannot end with '/'"
    if name.endswith(".lock"):
        return "Branch name cannot end with '.lock'"
    if "//" in name:
        return "Branch name cannot contain consecutive slashes '//'"
    return None


def validate_pr_title(title: Optional[str]) -> Optional[str]:
    if not title or not title.strip():
        return "PR title cannot be empty"
    trimmed = title.strip()
    if len(trimmed) > MAX_PR_TITLE_LENGTH:
        return f"PR title too long ({len(trimmed)} chars). Maximum is {MAX_PR_TITLE_LENGTH} characters."
    for position, char in enumerate(trimmed):
        if _is_control(char, allow_newlines=True):
            return f"PR title cannot contain control characters (found at position {position})"
    return None


def validate_identifier_format(identifier: str) -> Optional[str]:
    """Format check for user-supplied selectors: a hex id/hash or a group id ending in hex."""
    if not identifier:
        return "Identifier cannot be empty"
    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        return f"Identifier too long ({len(identifier)} chars). Maximum is {MAX_IDENTIFIER_LENGTH} characters."
    if hex_identifier_regex.match(identifier) or group_identifier_regex.match(identifier):
        return None
    return (f"Invalid identifier format: '{identifier}'. "
            "Expected hex string (4-40 chars) or group ID (name-hexsuffix).")
