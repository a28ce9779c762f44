"""Select commits from a revision walk.

A `CommitFilter` narrows down the commits produced by a revision walk with
a predicate. The walk itself is done by the backend: the filter only drops
the commits that don't match, keeping the order in which the backend
produced them. Iterating over a filter starts a new walk each time, so the
same filter can be iterated over more than once.
"""
import re
from typing import Callable, Iterable, Iterator, Sequence, Set, Union

import pygit2

from .tree import get_changed_paths_between_trees

CommitPredicate = Callable[[pygit2.Commit], bool]
"""Decides whether a commit should be selected."""

WalkFactory = Callable[[], Iterable[pygit2.Commit]]
"""Starts a new revision walk."""


class CommitFilter:
    """Lazily select the commits of a revision walk which match a predicate."""

    def __init__(self, walk_factory: WalkFactory, predicate: CommitPredicate) -> None:
        """Constructor.

        Args:
          walk_factory: Called to start a new revision walk every time the
            filter is iterated over.
          predicate: The commits for which this returns `True` are selected.
        """
        self._walk_factory = walk_factory
        self._predicate = predicate

    def __iter__(self) -> Iterator[pygit2.Commit]:
        return (commit for commit in self._walk_factory() if self._predicate(commit))


def walk_range(
    repo: pygit2.Repository,
    head: Union[pygit2.Oid, str],
    hide: Sequence[Union[pygit2.Oid, str]] = (),
) -> WalkFactory:
    """Make a factory for topological walks from `head`.

    Args:
      repo: The Git repository.
      head: The commit to start walking from.
      hide: Commits whose ancestors (including themselves) are excluded from
        the walk, like `git log hide..head`.

    Returns:
      A function which starts a new walk each time it's called.
    """

    def factory() -> Iterator[pygit2.Commit]:
        walker = repo.walk(head, pygit2.enums.SortMode.TOPOLOGICAL)
        for oid in hide:
            walker.hide(oid)
        return iter(walker)

    return factory


def author_matches(pattern: str) -> CommitPredicate:
    """Select commits whose author name or email matches `pattern`."""
    regex = re.compile(pattern)

    def predicate(commit: pygit2.Commit) -> bool:
        author = commit.author
        return bool(regex.search(f"{author.name} <{author.email}>"))

    return predicate


def message_matches(pattern: str) -> CommitPredicate:
    """Select commits whose message matches `pattern`."""
    regex = re.compile(pattern, re.MULTILINE)

    def predicate(commit: pygit2.Commit) -> bool:
        return bool(regex.search(commit.message))

    return predicate


def _get_changed_paths(commit: pygit2.Commit) -> Set[str]:
    # Root commits are compared against the empty tree.
    parent_tree = commit.parents[0].tree if commit.parent_ids else None
    return get_changed_paths_between_trees(parent_tree, commit.tree)


def touches_path(path: str) -> CommitPredicate:
    """Select commits which change `path`, compared to their first parent.

    If `path` is a directory, any change underneath it counts.
    """
    path = path.rstrip("/")

    def predicate(commit: pygit2.Commit) -> bool:
        return any(
            changed_path == path or changed_path.startswith(path + "/")
            for changed_path in _get_changed_paths(commit)
        )

    return predicate


def all_of(*predicates: CommitPredicate) -> CommitPredicate:
    def predicate(commit: pygit2.Commit) -> bool:
        return all(p(commit) for p in predicates)

    return predicate


def any_of(*predicates: CommitPredicate) -> CommitPredicate:
    def predicate(commit: pygit2.Commit) -> bool:
        return any(p(commit) for p in predicates)

    return predicate
