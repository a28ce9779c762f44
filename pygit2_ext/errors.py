"""Errors raised by this package.

Rewrite errors (`RewriteError` and its subclasses) are always raised before
anything has been written to the repository. Hook errors are only raised for
hooks which are allowed to fail the caller's operation; "never-fail" hooks
are logged instead.
"""
from typing import Sequence


class Pygit2ExtError(Exception):
    """Base class for errors raised by this package."""


class CommitError(Pygit2ExtError):
    """Creating a commit failed."""


class BackendError(CommitError):
    """The object store failed.

    The message of the underlying `pygit2` error is kept verbatim, and the
    original exception is chained as the cause.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class SignError(CommitError):
    """Producing a signature failed."""


class SignerFailedError(SignError):
    """The signing program failed, or produced no usable signature."""

    def __init__(self, program: str, reason: str) -> None:
        super().__init__(program, reason)
        self.program = program
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.program} failed to sign the data: {self.reason}"


class NoKeyError(SignError):
    """Signing was requested, but no signing key could be determined."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def __str__(self) -> str:
        return f"No signing key: {self.reason}"


class ConfigError(Pygit2ExtError):
    def __init__(self, name: str, value: str) -> None:
        super().__init__(name, value)
        self.name = name
        self.value = value

    def __str__(self) -> str:
        return f"Invalid value for {self.name}: {self.value}"


class RewriteError(Pygit2ExtError):
    """A rewrite was refused. Nothing was written to the repository."""


class ConflictsError(RewriteError):
    def __init__(self, operation: str, paths: Sequence[str]) -> None:
        super().__init__(operation, paths)
        self.operation = operation
        self.paths = list(paths)

    def __str__(self) -> str:
        conflicts = "\n  ".join(self.paths)
        return f"{self.operation} conflicts:\n  {conflicts}\n"


class NotLinearError(RewriteError):
    def __init__(self, oid: str, expected_parent: str) -> None:
        super().__init__(oid, expected_parent)
        self.oid = oid
        self.expected_parent = expected_parent

    def __str__(self) -> str:
        return (
            f"Commits do not form a linear chain: {self.oid} "
            f"does not have {self.expected_parent} as its only parent"
        )


class AmbiguousMainlineError(RewriteError):
    def __init__(self, oid: str, num_parents: int) -> None:
        super().__init__(oid, num_parents)
        self.oid = oid
        self.num_parents = num_parents

    def __str__(self) -> str:
        return (
            f"Commit {self.oid} is a merge with {self.num_parents} parents, "
            f"but no mainline parent was given"
        )


class HookError(Pygit2ExtError):
    """A hook rejected the operation."""


class HookFailedError(HookError):
    def __init__(self, name: str, exit_code: int) -> None:
        super().__init__(name, exit_code)
        self.name = name
        self.exit_code = exit_code

    def __str__(self) -> str:
        return f"`{self.name}` hook failed with code {self.exit_code}"


class CommitNotFoundError(BackendError):
    def __init__(self, hash: str) -> None:
        super().__init__(f"Commit not found: {hash}")
        self.hash = hash
