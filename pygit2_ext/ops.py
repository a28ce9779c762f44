"""Higher-level operations which rewrite commits.

These are closer to porcelain commands than to plumbing. None of them touch
the working copy, the index or any reference: each one writes new objects
and returns the OID of the new commit. Moving a branch to point at the result
is up to the caller (see `pygit2_ext.hooks.ReferenceTransaction`).

Every precondition (conflicts, non-linear chains, ambiguous merge parents) is
checked before the new commit is written, so a `RewriteError` means that the
repository history was left untouched.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import pygit2

from . import Formatter
from .commit import build_commit
from .errors import (
    AmbiguousMainlineError,
    BackendError,
    CommitNotFoundError,
    ConflictsError,
    NotLinearError,
)
from .identity import Identity, SignatureResolver
from .sign import Signer

CommitRef = Union[pygit2.Oid, str, pygit2.Commit]
"""A commit, its OID, or a (possibly abbreviated) hex OID."""


@dataclass(frozen=True, eq=True)
class RewriteStep:
    """One new commit to create on behalf of an existing one."""

    source: pygit2.Commit
    """The commit being rewritten."""

    parents: Tuple[pygit2.Oid, ...]
    tree: pygit2.Oid

    message: str

    author: Identity

    committer: Optional[Identity] = None
    """If not set, a fresh committer identity is resolved."""


RewritePlan = List[RewriteStep]


def head_id(repo: pygit2.Repository) -> Optional[pygit2.Oid]:
    """Look up the commit OID for `HEAD`, if any."""
    if repo.head_is_unborn:
        return None
    try:
        return repo.head.resolve().target
    except (KeyError, pygit2.GitError):
        return None


def head_branch(repo: pygit2.Repository) -> Optional[str]:
    """Look up the name of the branch that `HEAD` points to, if any."""
    if repo.head_is_unborn or repo.head_is_detached:
        return None
    return repo.head.shorthand


def is_dirty(repo: pygit2.Repository) -> bool:
    """Determine whether the working copy or the index has changes.

    An operation in progress (such as a merge or a rebase) also counts as
    dirty. Ignored files don't.
    """
    state = repo.state()
    if state != pygit2.enums.RepositoryState.NONE:
        logging.debug(f"Repository status is unclean: {state!r}")
        return True

    changed_paths = [
        path
        for path, flags in repo.status().items()
        if not flags & pygit2.enums.FileStatus.IGNORED
    ]
    if changed_paths:
        logging.debug(f"Repository is dirty: {', '.join(sorted(changed_paths))}")
        return True
    return False


def _get_commit(repo: pygit2.Repository, ref: CommitRef) -> pygit2.Commit:
    if isinstance(ref, pygit2.Commit):
        return ref
    try:
        return repo[ref].peel(pygit2.Commit)
    except (KeyError, ValueError, pygit2.GitError) as e:
        raise CommitNotFoundError(str(ref)) from e


def _get_parent_tree(
    repo: pygit2.Repository, commit: pygit2.Commit, parent_index: int = 0
) -> pygit2.Tree:
    if not commit.parent_ids:
        # A root commit introduces its whole tree.
        empty_tree_oid = repo.TreeBuilder().write()
        return repo[empty_tree_oid].peel(pygit2.Tree)
    return commit.parents[parent_index].tree


def _merge_trees(
    repo: pygit2.Repository,
    operation: str,
    base: pygit2.Tree,
    ours: pygit2.Tree,
    theirs: pygit2.Tree,
) -> pygit2.Oid:
    """Three-way merge `base..theirs` onto `ours`, returning the new tree.

    Raises:
      ConflictsError: The merge has conflicts. No tree was written.
    """
    try:
        index = repo.merge_trees(base, ours, theirs)
    except pygit2.GitError as e:
        raise BackendError(str(e)) from e

    if index.conflicts is not None:
        paths = []
        for (ancestor, our, their) in index.conflicts:
            entry = our or their or ancestor
            paths.append(entry.path if entry is not None else "<unknown>")
        raise ConflictsError(operation, paths)

    try:
        return index.write_tree(repo)
    except pygit2.GitError as e:
        raise BackendError(str(e)) from e


def _execute_plan(
    repo: pygit2.Repository,
    plan: RewritePlan,
    signer: Optional[Signer],
    resolver: Optional[SignatureResolver],
) -> pygit2.Oid:
    assert plan, "Empty rewrite plan"
    formatter = Formatter()
    new_oid = None
    for step in plan:
        new_oid = build_commit(
            repo,
            tree=step.tree,
            parents=step.parents,
            message=step.message,
            signer=signer,
            author=step.author,
            committer=step.committer,
            resolver=resolver,
        )
        logging.debug(
            formatter.format(
                "Rewrote {source:oid} as {new:oid}: {commit:commit}",
                source=step.source.id,
                new=new_oid,
                commit=step.source,
            )
        )
    assert new_oid is not None
    return new_oid


def cherry_pick(
    repo: pygit2.Repository,
    source: CommitRef,
    onto: CommitRef,
    mainline_parent_index: Optional[int] = None,
    signer: Optional[Signer] = None,
    resolver: Optional[SignatureResolver] = None,
) -> pygit2.Oid:
    """Apply the changes introduced by `source` on top of `onto`.

    Args:
      repo: The Git repository.
      source: The commit to cherry-pick.
      onto: The commit to apply the changes onto. It becomes the only parent
        of the new commit.
      mainline_parent_index: For merge commits, the (zero-based) index of the
        parent which the changes are computed against.
      signer: If provided, the new commit is signed.
      resolver: Resolves the committer identity of the new commit.

    Returns:
      The OID of the new commit. If `source` already has `onto` as its only
      parent, no commit is created and the OID of `source` is returned.

    Raises:
      AmbiguousMainlineError: `source` is a merge commit, but
        `mainline_parent_index` was not provided.
      ConflictsError: The changes don't apply cleanly to `onto`.
    """
    formatter = Formatter()
    source_commit = _get_commit(repo, source)
    onto_commit = _get_commit(repo, onto)

    num_parents = len(source_commit.parent_ids)
    if mainline_parent_index is None:
        if num_parents > 1:
            raise AmbiguousMainlineError(str(source_commit.id), num_parents)
        mainline_parent_index = 0
    elif not 0 <= mainline_parent_index < max(num_parents, 1):
        raise ValueError(
            f"Commit {source_commit.id} does not have a parent "
            f"with index {mainline_parent_index}"
        )

    if source_commit.parent_ids == [onto_commit.id]:
        logging.debug(
            formatter.format(
                "Skipping {source:oid}, already on top of {onto:oid}",
                source=source_commit.id,
                onto=onto_commit.id,
            )
        )
        return source_commit.id

    tree = _merge_trees(
        repo,
        "cherry-pick",
        base=_get_parent_tree(repo, source_commit, mainline_parent_index),
        ours=onto_commit.tree,
        theirs=source_commit.tree,
    )
    plan = [
        RewriteStep(
            source=source_commit,
            parents=(onto_commit.id,),
            tree=tree,
            message=source_commit.message,
            author=Identity.from_signature(source_commit.author),
        )
    ]
    return _execute_plan(repo, plan, signer=signer, resolver=resolver)


def squash(
    repo: pygit2.Repository,
    commits: Sequence[CommitRef],
    message: Optional[str] = None,
    signer: Optional[Signer] = None,
    resolver: Optional[SignatureResolver] = None,
) -> pygit2.Oid:
    """Squash a linear chain of commits into a single commit.

    The new commit has the tree of the last commit in the chain and the
    parent of the first one. Authorship is taken from the first commit.

    Args:
      repo: The Git repository.
      commits: The chain of commits, oldest first. Each commit must have the
        previous one as its only parent, and the first commit must not be a
        merge commit.
      message: The message of the new commit. Defaults to the messages of
        all the commits, separated by blank lines.
      signer: If provided, the new commit is signed.
      resolver: Resolves the committer identity of the new commit.

    Returns:
      The OID of the new commit.

    Raises:
      NotLinearError: The commits don't form a linear chain.
    """
    if not commits:
        raise ValueError("No commits to squash")
    chain = [_get_commit(repo, commit) for commit in commits]
    first_commit = chain[0]
    if len(first_commit.parent_ids) > 1:
        raise NotLinearError(str(first_commit.id), str(first_commit.parent_ids[0]))
    for (previous, current) in zip(chain, chain[1:]):
        if current.parent_ids != [previous.id]:
            raise NotLinearError(str(current.id), str(previous.id))

    if message is None:
        message = "\n\n".join(commit.message.rstrip("\n") for commit in chain) + "\n"

    last_commit = chain[-1]
    plan = [
        RewriteStep(
            source=last_commit,
            parents=tuple(first_commit.parent_ids),
            tree=last_commit.tree_id,
            message=message,
            author=Identity.from_signature(first_commit.author),
        )
    ]
    return _execute_plan(repo, plan, signer=signer, resolver=resolver)


def fixup(
    repo: pygit2.Repository,
    head: CommitRef,
    into: CommitRef,
    signer: Optional[Signer] = None,
) -> pygit2.Oid:
    """Fold the changes introduced by `head` into `into`.

    Unlike `squash`, `head` doesn't need to be a descendant of `into`: its
    changes are three-way merged into the tree of `into`. The author,
    committer, message and parents of `into` are kept.

    Raises:
      ConflictsError: The changes of `head` don't apply cleanly to `into`.
    """
    head_commit = _get_commit(repo, head)
    into_commit = _get_commit(repo, into)

    tree = _merge_trees(
        repo,
        "squash",
        base=_get_parent_tree(repo, head_commit),
        ours=into_commit.tree,
        theirs=head_commit.tree,
    )
    plan = [
        RewriteStep(
            source=into_commit,
            parents=tuple(into_commit.parent_ids),
            tree=tree,
            message=into_commit.message,
            author=Identity.from_signature(into_commit.author),
            committer=Identity.from_signature(into_commit.committer),
        )
    ]
    return _execute_plan(repo, plan, signer=signer, resolver=None)


def reword(
    repo: pygit2.Repository,
    commit: CommitRef,
    message: str,
    signer: Optional[Signer] = None,
    resolver: Optional[SignatureResolver] = None,
) -> pygit2.Oid:
    """Replace the message of a commit.

    The tree, parents and author are kept. The committer identity is
    resolved afresh.

    Returns:
      The OID of the new commit.
    """
    old_commit = _get_commit(repo, commit)
    plan = [
        RewriteStep(
            source=old_commit,
            parents=tuple(old_commit.parent_ids),
            tree=old_commit.tree_id,
            message=message,
            author=Identity.from_signature(old_commit.author),
        )
    ]
    return _execute_plan(repo, plan, signer=signer, resolver=resolver)
