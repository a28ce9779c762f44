"""Extensions for pygit2.

# Why?

`pygit2` exposes Git's plumbing: object creation, tree merges, revision walks
and references. Porcelain operations such as cherry-picking or rewording a
commit, signing the result, or running the repository's hooks around a
reference update are left to the caller. This package provides "good enough"
implementations of those operations, which never touch the working copy or
the index.

# Concepts

  * **Rewrite operations** (`pygit2_ext.ops`): cherry-pick, squash, fixup and
    reword. Each one returns the OID of a newly-created commit. None of them
    move any references; that is up to the caller.
  * **Signers** (`pygit2_ext.sign`): optional objects which produce a detached
    signature for a commit buffer, using GPG or SSH.
  * **Trees** (`pygit2_ext.tree`): compare trees path by path, and write
    edited or filtered copies of a tree.
  * **Hooks** (`pygit2_ext.hooks`): run the user's hook scripts, including the
    `reference-transaction` hook around a batch of reference updates.

Nothing in this package takes locks. Callers are expected to serialize
mutating operations against any given repository.
"""
import string
from typing import Any, Optional

import pygit2


class Formatter(string.Formatter):
    """Formatter with additional directives for commits, etc."""

    def format_field(self, value: Any, format_spec: str) -> str:
        if format_spec == "oid":
            assert isinstance(value, pygit2.Oid)
            return f"{value!s:8.8}"
        elif format_spec == "commit":
            assert isinstance(value, pygit2.Commit)
            first_line = value.message.split("\n", 1)[0]
            return first_line
        else:
            return super().format_field(value, format_spec)


def get_config(repo: pygit2.Repository, *names: str) -> Optional[str]:
    """Get the first of the given configuration values which is set.

    Args:
      repo: The Git repository.
      names: The names of the configuration keys to try, in order.

    Returns:
      The configuration value, or `None` if none of the keys are set.
    """
    for name in names:
        try:
            return repo.config[name]
        except KeyError:
            pass
    return None
