"""Activity reading, fork resolution and merging."""

from claimguard.activity.forks import ForkCache, ForkResolver, InMemoryForkCache, SqlForkCache
from claimguard.activity.merger import ActivityMerger, MergeResult, merge_events
from claimguard.activity.readers import (
    ForkReader, GitHubForkReader, GitHubIssueActivityReader, IssueState, MainRepoReader
)

__all__ = [
    "ActivityMerger",
    "ForkCache",
    "ForkReader",
    "ForkResolver",
    "GitHubForkReader",
    "GitHubIssueActivityReader",
    "InMemoryForkCache",
    "IssueState",
    "MainRepoReader",
    "MergeResult",
    "SqlForkCache",
    "merge_events",
]
