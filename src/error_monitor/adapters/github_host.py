"""
GitHub source control adapter.

Wraps PyGithub's blocking client; every call runs in a worker thread so the
event loop never blocks on the GitHub API.
"""

import asyncio
from itertools import islice
from typing import Dict, List, Optional
from loguru import logger

from github import Github, GithubException, InputGitTreeElement
from github.Repository import Repository

from ..exceptions import SourceControlError
from ..models import CommitInfo, FileContents, PullRequestRef, RepositoryRecord, RepositorySearchHit
from .base import SourceControlHost

SEARCH_RESULT_LIMIT = 10


def _github_error(e: GithubException) -> str:
    data = e.data if isinstance(e.data, dict) else {}
    return f"HTTP {e.status}: {data.get('message', 'Unknown error')}"


class GitHubSourceControlHost(SourceControlHost):
    """Source control host backed by the GitHub REST API."""

    def __init__(self, token: str, organization: Optional[str] = None):
        """
        Initialize GitHub adapter.

        Args:
            token: GitHub personal access token
            organization: Optional organization that searches are scoped to
        """
        self.token = token
        self.organization = organization
        self._github_client: Optional[Github] = None

    @property
    def github_client(self) -> Github:
        """Get or create GitHub client."""
        if self._github_client is None:
            self._github_client = Github(self.token)
        return self._github_client

    def _get_repo_sync(self, owner: str, repo: str) -> Repository:
        return self.github_client.get_repo(f"{owner}/{repo}")

    async def create_branch(self, owner: str, repo: str, branch_name: str, from_branch: Optional[str] = None) -> None:
        def create() -> None:
            repository = self._get_repo_sync(owner, repo)
            source = repository.get_branch(from_branch or repository.default_branch)
            repository.create_git_ref(ref=f"refs/heads/{branch_name}", sha=source.commit.sha)

        try:
            await asyncio.to_thread(create)
            logger.debug(f"Created branch {branch_name} in {owner}/{repo}")
        except GithubException as e:
            raise SourceControlError(
                f"Failed to create branch '{branch_name}' in {owner}/{repo}",
                repository=f"{owner}/{repo}",
                github_error=_github_error(e),
                cause=e
            )

    async def push_files(
        self,
        owner: str,
        repo: str,
        branch: str,
        files: List[Dict[str, str]],
        commit_message: str
    ) -> str:
        def push() -> str:
            repository = self._get_repo_sync(owner, repo)
            ref = repository.get_git_ref(f"heads/{branch}")
            base_commit = repository.get_git_commit(ref.object.sha)
            elements = [
                InputGitTreeElement(path=file["path"], mode="100644", type="blob", content=file["content"])
                for file in files
            ]
            tree = repository.create_git_tree(elements, base_commit.tree)
            commit = repository.create_git_commit(commit_message, tree, [base_commit])
            ref.edit(commit.sha)
            return commit.sha

        try:
            sha = await asyncio.to_thread(push)
            logger.debug(f"Pushed {len(files)} files to {owner}/{repo}@{branch}: {sha}")
            return sha
        except GithubException as e:
            raise SourceControlError(
                f"Failed to push files to {owner}/{repo}@{branch}",
                repository=f"{owner}/{repo}",
                github_error=_github_error(e),
                cause=e
            )

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        draft: bool = False
    ) -> PullRequestRef:
        def create() -> PullRequestRef:
            repository = self._get_repo_sync(owner, repo)
            pull = repository.create_pull(title=title, body=body, head=head, base=base, draft=draft)
            return PullRequestRef(url=pull.html_url, number=pull.number)

        try:
            return await asyncio.to_thread(create)
        except GithubException as e:
            raise SourceControlError(
                f"Failed to create pull request {head} -> {base} in {owner}/{repo}",
                repository=f"{owner}/{repo}",
                github_error=_github_error(e),
                cause=e
            )

    async def get_file_contents(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> Optional[FileContents]:
        def read() -> FileContents:
            repository = self._get_repo_sync(owner, repo)
            contents = repository.get_contents(path, ref=ref) if ref else repository.get_contents(path)
            if isinstance(contents, list):
                raise SourceControlError(f"'{path}' is a directory", repository=f"{owner}/{repo}")
            return FileContents(content=contents.decoded_content.decode("utf-8"), sha=contents.sha)

        try:
            return await asyncio.to_thread(read)
        except GithubException as e:
            if e.status == 404:
                return None
            raise SourceControlError(
                f"Failed to read '{path}' from {owner}/{repo}",
                repository=f"{owner}/{repo}",
                github_error=_github_error(e),
                cause=e
            )

    async def get_repository(self, owner: str, repo: str) -> Optional[RepositoryRecord]:
        try:
            repository = await asyncio.to_thread(self._get_repo_sync, owner, repo)
        except GithubException as e:
            if e.status == 404:
                logger.debug(f"Repository {owner}/{repo} not found")
                return None
            raise SourceControlError(
                f"GitHub API error for repository '{owner}/{repo}'",
                repository=f"{owner}/{repo}",
                github_error=_github_error(e),
                cause=e
            )
        return RepositoryRecord(
            full_name=repository.full_name,
            url=repository.html_url,
            default_branch=repository.default_branch,
        )

    async def search_repositories(self, query: str) -> List[RepositorySearchHit]:
        if self.organization:
            query = f"{query} org:{self.organization}"

        def search() -> List[RepositorySearchHit]:
            results = self.github_client.search_repositories(query)
            return [
                RepositorySearchHit(
                    owner=repository.owner.login,
                    name=repository.name,
                    full_name=repository.full_name,
                    url=repository.html_url,
                )
                for repository in islice(results, SEARCH_RESULT_LIMIT)
            ]

        try:
            return await asyncio.to_thread(search)
        except GithubException as e:
            raise SourceControlError(
                f"Repository search failed for query '{query}'",
                github_error=_github_error(e),
                cause=e
            )

    async def get_latest_commit(self, owner: str, repo: str, branch: str) -> Optional[CommitInfo]:
        def latest() -> CommitInfo:
            commit = self._get_repo_sync(owner, repo).get_branch(branch).commit
            author = commit.commit.author
            return CommitInfo(
                sha=commit.sha,
                message=commit.commit.message,
                author=author.name if author else "",
            )

        try:
            return await asyncio.to_thread(latest)
        except GithubException as e:
            if e.status == 404:
                return None
            raise SourceControlError(
                f"Failed to get latest commit of {owner}/{repo}@{branch}",
                repository=f"{owner}/{repo}",
                github_error=_github_error(e),
                cause=e
            )
