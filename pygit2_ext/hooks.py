"""Run Git hooks.

Git uses "hooks" to run user-defined scripts before or after certain events.
Since the operations in this package bypass the `git` executable, callers
which want to behave like Git have to run the hooks themselves.

Whether a failing hook fails the caller's operation depends on the hook:

  * `pre-commit`, `commit-msg`, `pre-rebase` (and any hook not listed here
    whose name doesn't start with `post-`): a non-zero exit raises
    `HookFailedError`.
  * `post-commit`, `post-rewrite`, `post-checkout` (and any other `post-`
    hook): a non-zero exit is only logged.
  * `reference-transaction`: a non-zero exit in the `prepared` state aborts
    the transaction. Failures in the other states are only logged, since the
    references have already been updated (or left alone) by then.

Hooks which don't exist (or aren't executable) are skipped silently.
"""
import enum
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

import pygit2

from . import Formatter, get_config
from .errors import BackendError, HookFailedError
from .utils import git_sh


class HookPolicy(enum.Enum):
    """What happens when a hook exits with a non-zero code."""

    FAIL = "fail"
    """The caller's operation fails."""

    NEVER_FAIL = "never-fail"
    """The failure is logged, and the operation carries on."""

    TRANSACTION = "transaction"
    """The reference transaction driving the hook decides."""


HOOK_POLICIES: Dict[str, HookPolicy] = {
    "pre-commit": HookPolicy.FAIL,
    "commit-msg": HookPolicy.FAIL,
    "pre-rebase": HookPolicy.FAIL,
    "post-commit": HookPolicy.NEVER_FAIL,
    "post-rewrite": HookPolicy.NEVER_FAIL,
    "post-checkout": HookPolicy.NEVER_FAIL,
    "reference-transaction": HookPolicy.TRANSACTION,
}

PUSH_HOOKS = [
    "pre-receive",
    "update",
    "post-receive",
    "post-update",
    "push-to-checkout",
]
"""Hooks which Git always runs in `$GIT_DIR`, rather than the working copy."""

SIGNAL_EXIT_CODE = 1

ZERO_OID = pygit2.Oid(hex="0" * 40)


def get_hook_policy(name: str) -> HookPolicy:
    policy = HOOK_POLICIES.get(name)
    if policy is not None:
        return policy
    elif name.startswith("post-"):
        return HookPolicy.NEVER_FAIL
    else:
        return HookPolicy.FAIL


@dataclass(frozen=True, eq=True)
class HookResult:
    """The record of one hook invocation."""

    name: str
    argv: Tuple[str, ...]
    stdin: Optional[bytes]

    exit_code: Optional[int]
    """The exit code of the hook, or `None` if there was no hook to run."""

    @property
    def skipped(self) -> bool:
        return self.exit_code is None

    @property
    def succeeded(self) -> bool:
        return self.exit_code is None or self.exit_code == 0


@dataclass(frozen=True, eq=True)
class RefUpdate:
    """One reference update in a reference transaction."""

    old: pygit2.Oid
    """The current target of the reference.

    Zeroed out when the reference is created anew, or force-updated
    regardless of its current value.
    """

    new: pygit2.Oid
    """The new target of the reference. Zeroed out to delete it."""

    name: str
    """The full name of the reference, like `refs/heads/master`."""


class TransactionState(enum.Enum):
    PREPARED = "prepared"
    COMMITTED = "committed"
    ABORTED = "aborted"


_TRANSACTION_TRANSITIONS: Dict[
    Optional[TransactionState], Set[TransactionState]
] = {
    None: {TransactionState.PREPARED},
    TransactionState.PREPARED: {
        TransactionState.COMMITTED,
        TransactionState.ABORTED,
    },
    TransactionState.COMMITTED: set(),
    TransactionState.ABORTED: set(),
}


class Hooks:
    """The hooks of a repository."""

    def __init__(self, repo: pygit2.Repository, root: Optional[str] = None) -> None:
        """Constructor.

        Args:
          repo: The Git repository.
          root: The directory containing the hooks. Defaults to
            `core.hooksPath`, or the `hooks` directory in `$GIT_DIR`.
        """
        self._repo = repo
        if root is None:
            root = get_config(repo, "core.hooksPath")
            if root is not None:
                root = os.path.expanduser(root)
                if not os.path.isabs(root):
                    root = os.path.join(self._get_cwd("pre-commit"), root)
            else:
                root = os.path.join(repo.path, "hooks")
        self._root = root

    @property
    def root(self) -> str:
        return self._root

    def find_hook(self, name: str) -> Optional[str]:
        """Find the executable for the given hook.

        Args:
          name: The name of the hook, like `pre-commit`.

        Returns:
          The path to the hook executable, or `None` if there is no
          executable hook with that name.
        """
        hook_path = os.path.join(self._root, name)
        if _is_executable(hook_path):
            return hook_path
        if os.name == "nt":
            hook_path += ".exe"
            if _is_executable(hook_path):
                return hook_path
        # Technically, Git warns about hooks which are present but not
        # executable, depending on `advice.ignoredHook`.
        return None

    def _get_cwd(self, name: str) -> str:
        # From `githooks(5)`: hooks run in the root of the working tree, or
        # in `$GIT_DIR` in a bare repository. Push hooks always run in
        # `$GIT_DIR`.
        if name in PUSH_HOOKS or self._repo.workdir is None:
            return self._repo.path
        return self._repo.workdir

    def _spawn(
        self,
        name: str,
        hook_path: str,
        args: Sequence[str],
        stdin: Optional[bytes],
        env: Optional[Mapping[str, str]],
    ) -> Tuple[Tuple[str, ...], int]:
        bin_name = os.path.basename(hook_path)
        sh_path = git_sh()
        if sh_path is None:
            raise FileNotFoundError("No `sh` for running hooks")
        # `"$@"` expands to `"$1" "$2" ...`, but `$0` must be given as well.
        argv = (sh_path, "-c", f'{bin_name} "$@"', bin_name, *args)

        hook_env = dict(os.environ)
        if env is not None:
            hook_env.update(env)
        hook_env["PATH"] = os.pathsep.join(
            [os.path.realpath(self._root), os.environ.get("PATH", "")]
        )

        logging.debug(f"Running hook: {hook_path} {' '.join(args)}")
        result = subprocess.run(
            argv,
            input=stdin if stdin is not None else b"",
            cwd=self._get_cwd(name),
            env=hook_env,
        )
        exit_code = result.returncode
        if exit_code < 0:
            # Killed by a signal.
            exit_code = SIGNAL_EXIT_CODE
        return (argv, exit_code)

    def run_hook(
        self,
        name: str,
        args: Sequence[str] = (),
        stdin: Optional[bytes] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> HookResult:
        """Run the given hook, if it exists.

        Args:
          name: The name of the hook, like `pre-commit`.
          args: The arguments to pass to the hook.
          stdin: The data to write to the hook's standard input.
          env: Additional environment variables for the hook.

        Returns:
          The record of the invocation. For `reference-transaction`, the
          caller is responsible for interpreting the exit code.

        Raises:
          HookFailedError: The hook failed, and its failure fails the
            caller's operation.
        """
        hook_path = self.find_hook(name)
        if hook_path is None:
            logging.debug(f"No `{name}` hook to run")
            return HookResult(name=name, argv=(), stdin=stdin, exit_code=None)

        policy = get_hook_policy(name)
        try:
            (argv, exit_code) = self._spawn(name, hook_path, args, stdin, env)
        except OSError as e:
            logging.warning(f"Failed to run `{name}` hook: {e}")
            (argv, exit_code) = ((hook_path, *args), SIGNAL_EXIT_CODE)
        result = HookResult(name=name, argv=argv, stdin=stdin, exit_code=exit_code)

        if exit_code != 0:
            if policy == HookPolicy.FAIL:
                raise HookFailedError(name, exit_code)
            elif policy == HookPolicy.NEVER_FAIL:
                logging.warning(f"Hook `{name}` failed with code {exit_code}")
            else:
                logging.debug(f"Hook `{name}` failed with code {exit_code}")
        return result

    def run_post_rewrite_rebase(
        self, changed_oids: Sequence[Tuple[pygit2.Oid, pygit2.Oid]]
    ) -> None:
        """Run the `post-rewrite` hook as if called by `git rebase`.

        Args:
          changed_oids: Pairs of (old, new) commit OIDs, in the order in
            which they were rewritten. For squashes, every squashed commit
            is listed with the same new OID. Dropped commits aren't listed.
        """
        stdin = "".join(f"{old_oid} {new_oid}\n" for (old_oid, new_oid) in changed_oids)
        self.run_hook("post-rewrite", ["rebase"], stdin=stdin.encode())

    def run_reference_transaction(
        self,
        updates: Sequence[RefUpdate],
        apply: Optional[Callable[[], None]] = None,
    ) -> TransactionState:
        """Update references, running the `reference-transaction` hook.

        Args:
          updates: The reference updates to make.
          apply: Applies the updates to the repository. Defaults to
            `apply_ref_updates`.

        Returns:
          `COMMITTED` if the updates were applied, or `ABORTED` if the hook
          rejected them (in which case no reference was touched).
        """
        if apply is None:

            def apply() -> None:
                apply_ref_updates(self._repo, updates)

        transaction = ReferenceTransaction(self, updates)
        return transaction.run(apply)


class ReferenceTransaction:
    """Drive the `reference-transaction` hook for one batch of updates.

    The hook is called with `prepared` before the references are updated,
    and then with either `committed` or `aborted`. It is never called twice
    with the same state, so it is called at most twice per transaction.
    """

    def __init__(self, hooks: Hooks, updates: Sequence[RefUpdate]) -> None:
        self._hooks = hooks
        self._updates = list(updates)
        self._state: Optional[TransactionState] = None

    @property
    def state(self) -> Optional[TransactionState]:
        return self._state

    def _transition(self, state: TransactionState) -> HookResult:
        if state not in _TRANSACTION_TRANSITIONS[self._state]:
            raise ValueError(
                f"Invalid reference transaction transition: {self._state} -> {state}"
            )
        self._state = state
        stdin = "".join(
            f"{update.old} {update.new} {update.name}\n" for update in self._updates
        )
        return self._hooks.run_hook(
            "reference-transaction", [state.value], stdin=stdin.encode()
        )

    def run(self, apply: Callable[[], None]) -> TransactionState:
        """Run the transaction.

        Args:
          apply: Applies the updates to the repository. Only called if the
            hook accepts the `prepared` transaction.

        Returns:
          The final state of the transaction.

        Raises:
          Exception: Whatever `apply` raised. The hook is told that the
            transaction was aborted first.
        """
        result = self._transition(TransactionState.PREPARED)
        if not result.succeeded:
            logging.warning(
                f"Hook `reference-transaction` rejected the transaction "
                f"with code {result.exit_code}"
            )
            self._transition(TransactionState.ABORTED)
            return TransactionState.ABORTED

        try:
            apply()
        except Exception:
            self._transition(TransactionState.ABORTED)
            raise

        result = self._transition(TransactionState.COMMITTED)
        if not result.succeeded:
            logging.warning(
                f"Hook `reference-transaction` failed with code {result.exit_code} "
                f"after the transaction was committed"
            )
        return TransactionState.COMMITTED


def _get_ref_target(
    repo: pygit2.Repository, name: str
) -> Optional[Union[pygit2.Oid, str]]:
    """Get the target of a reference without resolving it, if it exists."""
    try:
        reference = repo.references.get(name)
    except (ValueError, pygit2.GitError) as e:
        raise BackendError(str(e)) from e
    if reference is None:
        return None
    return reference.target


def _set_ref_target(
    repo: pygit2.Repository, name: str, target: Optional[Union[pygit2.Oid, str]]
) -> None:
    if target is None:
        if repo.references.get(name) is not None:
            repo.references.delete(name)
    else:
        repo.references.create(name, target, force=True)


def apply_ref_updates(repo: pygit2.Repository, updates: Sequence[RefUpdate]) -> None:
    """Apply reference updates to the repository, all or nothing.

    Every expected old value is checked before any reference is touched. If
    updating one of the references fails, the references which were already
    updated are restored to their previous targets.

    Raises:
      BackendError: A reference didn't have its expected old value, or the
        backend failed to update it.
    """
    formatter = Formatter()
    previous_targets = []
    for update in updates:
        previous_target = _get_ref_target(repo, update.name)
        previous_targets.append(previous_target)
        if update.old == ZERO_OID:
            continue
        current = None
        if previous_target is not None:
            current = repo.references[update.name].resolve().target
        if current != update.old:
            raise BackendError(
                formatter.format(
                    "Reference {name} is at {current}, expected {old:oid}",
                    name=update.name,
                    current=current,
                    old=update.old,
                )
            )

    applied: List[Tuple[str, Optional[Union[pygit2.Oid, str]]]] = []
    for (update, previous_target) in zip(updates, previous_targets):
        try:
            if update.new == ZERO_OID:
                repo.references.delete(update.name)
            else:
                repo.references.create(update.name, update.new, force=True)
        except (KeyError, ValueError, pygit2.GitError) as e:
            _restore_ref_targets(repo, applied)
            raise BackendError(str(e)) from e
        applied.append((update.name, previous_target))
        logging.debug(
            formatter.format(
                "Updated {name} to {new:oid}", name=update.name, new=update.new
            )
        )


def _restore_ref_targets(
    repo: pygit2.Repository,
    applied: Sequence[Tuple[str, Optional[Union[pygit2.Oid, str]]]],
) -> None:
    for (name, target) in reversed(applied):
        try:
            _set_ref_target(repo, name, target)
        except (KeyError, ValueError, pygit2.GitError) as e:
            logging.warning(f"Failed to restore reference {name} to {target}: {e}")
        else:
            logging.debug(f"Restored reference {name} to {target}")


def _is_executable(path: str) -> bool:
    if not os.path.isfile(path):
        return False
    if os.name == "nt":
        return True
    return bool(os.stat(path).st_mode & 0o111)
