"""
Repository resolution service for the Error Monitor.

Maps an audit log error and its parsed stack trace to the repository that owns
the failing code. Heuristics run in a fixed trust order: explicit hint, then
configured source mapping, then evidence in the stack trace, then a fuzzy
repository search.
"""

import re
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from loguru import logger

from ..adapters.base import SourceControlHost
from ..constants import STACK_TRACE
from ..models import AuditError, ParsedStackTrace, RepositoryDescriptor
from ..validation import InputValidator

_HOSTED_PATH_PATTERN = re.compile(r"github\.com/([^/]+)/([^/]+)")

ResolutionAttempt = Callable[[AuditError, ParsedStackTrace], Awaitable[Optional[RepositoryDescriptor]]]


class RepositoryResolver:
    """Identifies the repository associated with an error."""

    def __init__(
        self,
        source_control: SourceControlHost,
        repository_mappings: Optional[Dict[str, str]] = None
    ):
        """
        Initialize repository resolver.

        Args:
            source_control: Host used for direct lookups and searches
            repository_mappings: Static error source → 'owner/repo' table
        """
        self.source_control = source_control
        self.repository_mappings: Dict[str, str] = dict(repository_mappings or {})

    @property
    def attempts(self) -> Tuple[Tuple[str, ResolutionAttempt], ...]:
        """Resolution heuristics in trust order."""
        return (
            ("error_hint", self.from_error_hint),
            ("source_mapping", self.from_source_mapping),
            ("stack_trace", self.from_stack_trace),
            ("search", self.from_search),
        )

    async def resolve(
        self,
        error: AuditError,
        stack_trace: ParsedStackTrace
    ) -> Optional[RepositoryDescriptor]:
        """
        Find the repository for a given error.

        Args:
            error: Audit log error record
            stack_trace: Parsed stack trace of the error

        Returns:
            Repository descriptor, or None if nothing matched. Lookup and search
            failures from the source control host propagate unchanged.
        """
        for name, attempt in self.attempts:
            descriptor = await attempt(error, stack_trace)
            if descriptor:
                logger.info(f"Resolved repository {descriptor.full_name} for error {error.id} via {name}")
                return descriptor

        logger.warning(f"Could not resolve a repository for error {error.id}")
        return None

    async def lookup(self, full_name: Optional[str]) -> Optional[RepositoryDescriptor]:
        """
        Look up a repository by 'owner/repo'.

        Returns:
            Descriptor when the host knows the repository; None for malformed
            names or unknown repositories
        """
        segments = InputValidator.split_full_name(full_name)
        if not segments:
            logger.debug(f"Ignoring malformed repository name: {full_name!r}")
            return None
        owner, name = segments

        record = await self.source_control.get_repository(owner, name)
        if record is None:
            return None

        canonical = InputValidator.split_full_name(record.full_name)
        if canonical:
            owner, name = canonical
        return RepositoryDescriptor(
            owner=owner,
            name=name,
            url=record.url,
            default_branch=record.default_branch,
        )

    async def from_error_hint(
        self,
        error: AuditError,
        stack_trace: ParsedStackTrace
    ) -> Optional[RepositoryDescriptor]:
        if not error.repository:
            return None
        return await self.lookup(error.repository)

    async def from_source_mapping(
        self,
        error: AuditError,
        stack_trace: ParsedStackTrace
    ) -> Optional[RepositoryDescriptor]:
        mapped = self.repository_mappings.get(error.source)
        if not mapped:
            return None
        return await self.lookup(mapped)

    async def from_stack_trace(
        self,
        error: AuditError,
        stack_trace: ParsedStackTrace
    ) -> Optional[RepositoryDescriptor]:
        for frame in stack_trace.first_party_frames():
            match = _HOSTED_PATH_PATTERN.search(frame.file_path)
            if match:
                descriptor = await self.lookup(f"{match.group(1)}/{match.group(2)}")
                if descriptor:
                    return descriptor

            if frame.repository:
                descriptor = await self.lookup(frame.repository)
                if descriptor:
                    return descriptor
        return None

    async def from_search(
        self,
        error: AuditError,
        stack_trace: ParsedStackTrace
    ) -> Optional[RepositoryDescriptor]:
        terms = self.build_search_terms(error, stack_trace)
        if not terms:
            return None

        query = " ".join(terms)
        logger.debug(f"Searching repositories for error {error.id}: {query!r}")
        results = await self.source_control.search_repositories(query)
        if not results:
            return None

        hit = results[0]
        # Search hits carry no default branch; callers needing it must look it up.
        return RepositoryDescriptor(
            owner=hit.owner,
            name=hit.name,
            url=hit.url,
            default_branch=STACK_TRACE.PLACEHOLDER_DEFAULT_BRANCH,
        )

    @staticmethod
    def build_search_terms(error: AuditError, stack_trace: ParsedStackTrace) -> List[str]:
        """Error source plus distinct file base names from the first first-party frames."""
        terms: List[str] = []
        if error.source:
            terms.append(error.source)

        for frame in stack_trace.first_party_frames()[:STACK_TRACE.SEARCH_FRAME_LIMIT]:
            base_name = PurePosixPath(frame.file_path.replace("\\", "/")).stem
            if base_name and base_name not in terms:
                terms.append(base_name)
        return terms

    def add_mapping(self, source: str, repository: str) -> None:
        """Add or replace a source → repository mapping."""
        self.repository_mappings[source] = repository
