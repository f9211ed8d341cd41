"""
Input validation helpers for repository names, error ids and mapping tables.

Malformed repository names are treated as "no match" by the resolver, so the
helpers here return ``None`` for those instead of raising.
"""

import re
from typing import Dict, Optional, Tuple


class InputValidator:
    """Centralized input validation."""

    # Patterns
    REPO_SEGMENT_PATTERN = re.compile(r'^[A-Za-z0-9_.-]+$')
    ERROR_ID_PATTERN = re.compile(r'^[A-Za-z0-9_.-]+$')

    # Limits
    MAX_REPO_NAME_LENGTH = 200
    MAX_ERROR_ID_LENGTH = 100

    @staticmethod
    def split_full_name(full_name: Optional[str]) -> Optional[Tuple[str, str]]:
        """
        Split an 'owner/repo' name into its two segments.

        Args:
            full_name: Repository name in 'owner/repo' format

        Returns:
            (owner, repo), or None if either segment is missing or invalid
        """
        if not full_name or not isinstance(full_name, str):
            return None
        if len(full_name) > InputValidator.MAX_REPO_NAME_LENGTH:
            return None

        parts = full_name.strip().split('/')
        if len(parts) < 2:
            return None

        owner, repo = parts[0], parts[1]
        if not owner or not repo:
            return None
        if '..' in owner or '..' in repo:
            return None
        if not InputValidator.REPO_SEGMENT_PATTERN.match(owner):
            return None
        if not InputValidator.REPO_SEGMENT_PATTERN.match(repo):
            return None
        return owner, repo

    @staticmethod
    def validate_error_id(error_id: str) -> str:
        """
        Validate that an error id can be embedded in a branch name.

        Raises:
            ValueError: If the id is empty, too long or has unsafe characters
        """
        if not error_id or not isinstance(error_id, str):
            raise ValueError("Error id must be a non-empty string")

        if len(error_id) > InputValidator.MAX_ERROR_ID_LENGTH:
            raise ValueError(
                f"Error id too long (max {InputValidator.MAX_ERROR_ID_LENGTH} chars)"
            )

        if not InputValidator.ERROR_ID_PATTERN.match(error_id) or '..' in error_id:
            raise ValueError(
                f"Invalid error id: {error_id}. "
                "Only alphanumeric characters, hyphens, underscores and dots are allowed."
            )

        return error_id

    @staticmethod
    def parse_repository_mappings(text: Optional[str]) -> Dict[str, str]:
        """
        Parse a 'source=owner/repo,source2=owner/repo2' mapping string.

        Entries without '=' or with a malformed repository are skipped.
        """
        mappings: Dict[str, str] = {}
        if not text:
            return mappings

        for entry in text.split(','):
            if '=' not in entry:
                continue
            source, repository = (part.strip() for part in entry.split('=', 1))
            if source and InputValidator.split_full_name(repository):
                mappings[source] = repository
        return mappings
