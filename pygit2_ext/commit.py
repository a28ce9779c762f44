"""Create commit objects, optionally signed.

Commits are immutable: "changing" a commit always means building a new
`CommitDescriptor` and writing it as a new object. The signature, if any, is
computed over the canonical commit buffer (the commit object without its
`gpgsig` header) and spliced into the object by the backend.
"""
import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import pygit2

from . import Formatter
from .errors import BackendError, SignerFailedError
from .identity import Identity, SignatureResolver
from .sign import Signer


@dataclass(frozen=True, eq=True)
class CommitDescriptor:
    """Everything needed to write a commit object."""

    tree: pygit2.Oid
    parents: Tuple[pygit2.Oid, ...]
    """The parents of the commit, in order."""

    message: str
    author: Identity
    committer: Identity

    signature: Optional[bytes] = None
    """The detached signature of the canonical buffer, if signed."""

    def canonical_buffer(self, repo: pygit2.Repository) -> bytes:
        """Serialize the commit without its signature.

        This is the data that a signer signs.
        """
        try:
            content = repo.create_commit_string(
                self.author.to_signature(),
                self.committer.to_signature(),
                self.message,
                self.tree,
                list(self.parents),
            )
        except pygit2.GitError as e:
            raise BackendError(str(e)) from e
        return content.encode()


def write_commit(
    repo: pygit2.Repository,
    descriptor: CommitDescriptor,
    signer: Optional[Signer] = None,
) -> pygit2.Oid:
    """Write the commit described by `descriptor` to the object store.

    Args:
      repo: The Git repository.
      descriptor: The commit to write. Its `signature` field must be unset;
        it is filled in from `signer`.
      signer: If provided, the commit is signed with the committer's
        identity.

    Returns:
      The OID of the new commit.

    Raises:
      SignError: The signer failed. Nothing was written.
      BackendError: The object store failed.
    """
    assert descriptor.signature is None, "Descriptor is already signed"
    if signer is None:
        try:
            return repo.create_commit(
                None,
                descriptor.author.to_signature(),
                descriptor.committer.to_signature(),
                descriptor.message,
                descriptor.tree,
                list(descriptor.parents),
            )
        except pygit2.GitError as e:
            raise BackendError(str(e)) from e

    buffer = descriptor.canonical_buffer(repo)
    signature = signer.sign(buffer, descriptor.committer)
    if not signature.strip():
        raise SignerFailedError(type(signer).__name__, "empty signature")
    signed = dataclasses.replace(descriptor, signature=signature)

    try:
        oid = repo.create_commit_with_signature(
            buffer.decode(), signed.signature.decode()
        )
    except (pygit2.GitError, UnicodeDecodeError) as e:
        raise BackendError(str(e)) from e
    logging.debug(Formatter().format("Created signed commit {oid:oid}", oid=oid))
    return oid


def build_commit(
    repo: pygit2.Repository,
    tree: pygit2.Oid,
    parents: Sequence[pygit2.Oid],
    message: str,
    signer: Optional[Signer] = None,
    *,
    author: Optional[Identity] = None,
    committer: Optional[Identity] = None,
    resolver: Optional[SignatureResolver] = None,
) -> pygit2.Oid:
    """Create a new commit.

    Args:
      repo: The Git repository.
      tree: The OID of the tree of the new commit.
      parents: The OIDs of the parents of the new commit, in order.
      message: The commit message.
      signer: If provided, the signer to sign the commit with.
      author: The author identity. Resolved with `resolver` if not
        provided.
      committer: The committer identity. Resolved with `resolver` if not
        provided.
      resolver: Resolves identities. Defaults to one reading the process
        environment and the repository configuration.

    Returns:
      The OID of the new commit.

    Raises:
      SignError: The signer failed. Nothing was written.
      BackendError: The object store failed, or an identity could not be
        resolved.
    """
    if resolver is None:
        resolver = SignatureResolver(repo)
    if author is None:
        author = resolver.resolve_author()
    if committer is None:
        committer = resolver.resolve_committer()

    descriptor = CommitDescriptor(
        tree=tree,
        parents=tuple(parents),
        message=message,
        author=author,
        committer=committer,
    )
    return write_commit(repo, descriptor, signer)
