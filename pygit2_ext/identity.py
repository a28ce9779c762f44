"""Resolve the author and committer identities for new commits.

Identities are resolved in this order, independently for the name and the
email, and independently for the author and the committer:

  1. An explicit override passed to the resolver.
  2. The `GIT_{AUTHOR,COMMITTER}_{NAME,EMAIL}` environment variables.
  3. The `user.name` and `user.email` configuration of the repository.
  4. The backend's default signature.

The environment is passed in as a mapping, so that callers (and tests) can
control it without modifying the process environment. Nothing is cached:
the configuration may change between calls in a long-lived process.
"""
import os
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import pygit2

from . import get_config
from .errors import BackendError


@dataclass(frozen=True, eq=True)
class Identity:
    """The name, email and timestamp recorded in a commit header."""

    name: str
    email: str

    time: int
    """Seconds since the epoch."""

    offset: int
    """Offset from UTC, in minutes."""

    @classmethod
    def from_signature(cls, signature: pygit2.Signature) -> "Identity":
        return cls(
            name=signature.name,
            email=signature.email,
            time=signature.time,
            offset=signature.offset,
        )

    def to_signature(self) -> pygit2.Signature:
        return pygit2.Signature(self.name, self.email, self.time, self.offset)


def _local_offset(timestamp: int) -> int:
    return time.localtime(timestamp).tm_gmtoff // 60


class SignatureResolver:
    """Resolve identities for the author and committer of a new commit."""

    def __init__(
        self,
        repo: pygit2.Repository,
        env: Mapping[str, str] = os.environ,
        clock: Callable[[], float] = time.time,
        author: Optional[Identity] = None,
        committer: Optional[Identity] = None,
    ) -> None:
        """Constructor.

        Args:
          repo: The Git repository, used to read `user.name` and
            `user.email`.
          env: The environment to read the `GIT_*` identity variables from.
          clock: Returns the current time, used to timestamp identities.
          author: If provided, always used as the author identity.
          committer: If provided, always used as the committer identity.
        """
        self._repo = repo
        self._env = env
        self._clock = clock
        self._author = author
        self._committer = committer

    def resolve_author(self) -> Identity:
        if self._author is not None:
            return self._author
        return self._resolve("AUTHOR")

    def resolve_committer(self) -> Identity:
        if self._committer is not None:
            return self._committer
        return self._resolve("COMMITTER")

    def _resolve(self, role: str) -> Identity:
        name = self._env.get(f"GIT_{role}_NAME") or get_config(
            self._repo, "user.name"
        )
        email = self._env.get(f"GIT_{role}_EMAIL") or get_config(
            self._repo, "user.email"
        )
        if name is None or email is None:
            try:
                default_signature = self._repo.default_signature
            except (KeyError, pygit2.GitError) as e:
                raise BackendError(
                    f"Unable to resolve {role.lower()} identity: {e}"
                ) from e
            if name is None:
                name = default_signature.name
            if email is None:
                email = default_signature.email

        timestamp = int(self._clock())
        return Identity(
            name=name, email=email, time=timestamp, offset=_local_offset(timestamp)
        )
