import logging
import os

import pytest
from _pytest.logging import LogCaptureFixture

from pygit2_ext.errors import BackendError, HookFailedError
from pygit2_ext.hooks import (
    ZERO_OID,
    HookPolicy,
    Hooks,
    ReferenceTransaction,
    RefUpdate,
    TransactionState,
    get_hook_policy,
)
from helpers import Git

LOG_STATE_HOOK = """\
echo "$1" >> hook.log
cat >> hook.stdin
"""


def read(git: Git, path: str) -> str:
    with open(os.path.join(str(git.path), path)) as f:
        return f.read()


def test_hook_policies() -> None:
    assert get_hook_policy("pre-commit") == HookPolicy.FAIL
    assert get_hook_policy("post-commit") == HookPolicy.NEVER_FAIL
    assert get_hook_policy("reference-transaction") == HookPolicy.TRANSACTION
    assert get_hook_policy("post-index-change") == HookPolicy.NEVER_FAIL
    assert get_hook_policy("prepare-commit-msg") == HookPolicy.FAIL


def test_missing_hook_is_skipped(git: Git) -> None:
    git.init_repo()
    hooks = Hooks(git.get_repo())
    result = hooks.run_hook("pre-commit")
    assert result.skipped
    assert result.succeeded


def test_non_executable_hook_is_skipped(git: Git) -> None:
    git.init_repo()
    path = os.path.join(str(git.path), ".git", "hooks", "pre-commit")
    with open(path, "w") as f:
        f.write("#!/bin/sh\nexit 1\n")
    os.chmod(path, 0o644)

    hooks = Hooks(git.get_repo())
    assert hooks.find_hook("pre-commit") is None
    assert hooks.run_hook("pre-commit").skipped


def test_hook_arguments_and_stdin(git: Git) -> None:
    git.init_repo()
    git.write_hook(
        "pre-rebase",
        """\
echo "$@" > hook.args
cat > hook.stdin
pwd > hook.cwd
""",
    )
    hooks = Hooks(git.get_repo())
    result = hooks.run_hook("pre-rebase", ["upstream", "branch"], stdin=b"some input\n")
    assert result.exit_code == 0
    assert not result.skipped
    assert read(git, "hook.args") == "upstream branch\n"
    assert read(git, "hook.stdin") == "some input\n"
    assert os.path.realpath(read(git, "hook.cwd").strip()) == os.path.realpath(
        str(git.path)
    )


def test_failing_hook_fails(git: Git) -> None:
    git.init_repo()
    git.write_hook("pre-commit", "exit 3\n")
    hooks = Hooks(git.get_repo())
    with pytest.raises(HookFailedError) as exc_info:
        hooks.run_hook("pre-commit")
    assert exc_info.value.exit_code == 3
    assert str(exc_info.value) == "`pre-commit` hook failed with code 3"


def test_failing_post_hook_is_logged(git: Git, caplog: LogCaptureFixture) -> None:
    git.init_repo()
    git.write_hook("post-commit", "exit 2\n")
    hooks = Hooks(git.get_repo())
    with caplog.at_level(logging.WARNING):
        result = hooks.run_hook("post-commit")
    assert result.exit_code == 2
    assert not result.succeeded
    assert "Hook `post-commit` failed with code 2" in caplog.text


def test_hook_killed_by_signal(git: Git, caplog: LogCaptureFixture) -> None:
    git.init_repo()
    git.write_hook("post-checkout", "kill -9 $$\n")
    hooks = Hooks(git.get_repo())
    with caplog.at_level(logging.WARNING):
        result = hooks.run_hook("post-checkout")
    assert result.exit_code != 0


def test_hooks_path(git: Git) -> None:
    git.init_repo()
    git.run("config", ["core.hooksPath", "my-hooks"])
    git.write_script(os.path.join("my-hooks", "pre-commit"), "exit 4\n")
    git.write_hook("pre-commit", "exit 0\n")

    hooks = Hooks(git.get_repo())
    assert os.path.realpath(hooks.root) == os.path.realpath(
        os.path.join(str(git.path), "my-hooks")
    )
    with pytest.raises(HookFailedError):
        hooks.run_hook("pre-commit")


def test_post_rewrite_rebase(git: Git) -> None:
    git.init_repo()
    git.commit_file(name="test1", time=1)
    git.write_hook(
        "post-rewrite",
        """\
echo "$@" > hook.args
cat > hook.stdin
""",
    )
    old_oid = git.get_oid("HEAD~1")
    new_oid = git.get_oid("HEAD")

    Hooks(git.get_repo()).run_post_rewrite_rebase([(old_oid, new_oid)])
    assert read(git, "hook.args") == "rebase\n"
    assert read(git, "hook.stdin") == f"{old_oid} {new_oid}\n"


def test_reference_transaction_committed(git: Git) -> None:
    git.init_repo()
    git.write_hook("reference-transaction", LOG_STATE_HOOK)
    repo = git.get_repo()
    head_oid = git.get_oid("HEAD")

    updates = [RefUpdate(old=ZERO_OID, new=head_oid, name="refs/heads/new-branch")]
    state = Hooks(repo).run_reference_transaction(updates)

    assert state == TransactionState.COMMITTED
    assert git.get_oid("new-branch") == head_oid
    assert read(git, "hook.log") == "prepared\ncommitted\n"
    assert read(git, "hook.stdin") == (
        f"{ZERO_OID} {head_oid} refs/heads/new-branch\n" * 2
    )


def test_reference_transaction_rejected(git: Git) -> None:
    git.init_repo()
    git.write_hook(
        "reference-transaction",
        LOG_STATE_HOOK + 'if [ "$1" = prepared ]; then exit 1; fi\n',
    )
    repo = git.get_repo()
    refs_before = git.ref_targets()

    updates = [
        RefUpdate(
            old=git.get_oid("master"), new=ZERO_OID, name="refs/heads/master"
        )
    ]
    state = Hooks(repo).run_reference_transaction(updates)

    assert state == TransactionState.ABORTED
    assert git.ref_targets() == refs_before
    assert read(git, "hook.log") == "prepared\naborted\n"


def test_reference_transaction_apply_fails(git: Git) -> None:
    git.init_repo()
    git.commit_file(name="test1", time=1)
    git.write_hook("reference-transaction", LOG_STATE_HOOK)
    repo = git.get_repo()
    refs_before = git.ref_targets()

    # The expected old value is stale.
    updates = [
        RefUpdate(
            old=git.get_oid("HEAD~1"),
            new=git.get_oid("HEAD~1"),
            name="refs/heads/master",
        ),
        RefUpdate(old=ZERO_OID, new=git.get_oid("HEAD"), name="refs/heads/other"),
    ]
    with pytest.raises(BackendError):
        Hooks(repo).run_reference_transaction(updates)

    assert git.ref_targets() == refs_before
    assert read(git, "hook.log") == "prepared\naborted\n"


def test_reference_transaction_committed_hook_fails(
    git: Git, caplog: LogCaptureFixture
) -> None:
    git.init_repo()
    git.write_hook(
        "reference-transaction",
        LOG_STATE_HOOK + 'if [ "$1" = committed ]; then exit 1; fi\n',
    )
    repo = git.get_repo()
    head_oid = git.get_oid("HEAD")

    updates = [RefUpdate(old=ZERO_OID, new=head_oid, name="refs/heads/new-branch")]
    with caplog.at_level(logging.WARNING):
        state = Hooks(repo).run_reference_transaction(updates)

    assert state == TransactionState.COMMITTED
    assert git.get_oid("new-branch") == head_oid
    assert read(git, "hook.log") == "prepared\ncommitted\n"
    assert "after the transaction was committed" in caplog.text


def test_reference_transaction_without_hook(git: Git) -> None:
    git.init_repo()
    repo = git.get_repo()
    head_oid = git.get_oid("HEAD")

    updates = [RefUpdate(old=head_oid, new=head_oid, name="refs/heads/master")]
    assert Hooks(repo).run_reference_transaction(updates) == TransactionState.COMMITTED


def test_reference_transaction_states(git: Git) -> None:
    git.init_repo()
    repo = git.get_repo()
    applied = []

    transaction = ReferenceTransaction(Hooks(repo), [])
    assert transaction.state is None
    assert transaction.run(lambda: applied.append(True)) == TransactionState.COMMITTED
    assert transaction.state == TransactionState.COMMITTED
    assert applied == [True]

    with pytest.raises(ValueError):
        transaction.run(lambda: applied.append(True))
    assert applied == [True]


def test_reference_transaction_invalid_ref_name(git: Git) -> None:
    git.init_repo()
    git.write_hook("reference-transaction", LOG_STATE_HOOK)
    repo = git.get_repo()
    head_oid = git.get_oid("HEAD")
    refs_before = git.ref_targets()

    updates = [
        RefUpdate(old=ZERO_OID, new=head_oid, name="refs/heads/good"),
        RefUpdate(old=ZERO_OID, new=head_oid, name="refs/heads/bad..name"),
    ]
    with pytest.raises(BackendError):
        Hooks(repo).run_reference_transaction(updates)

    assert git.ref_targets() == refs_before
    assert read(git, "hook.log") == "prepared\naborted\n"


def test_reference_transaction_rolls_back_applied_updates(git: Git) -> None:
    git.init_repo()
    git.commit_file(name="test1", time=1)
    git.run("branch", ["existing", "HEAD~1"])
    git.write_hook("reference-transaction", LOG_STATE_HOOK)
    repo = git.get_repo()
    refs_before = git.ref_targets()

    # Deleting a reference which doesn't exist only fails once the earlier
    # updates have been made.
    updates = [
        RefUpdate(old=ZERO_OID, new=git.get_oid("HEAD"), name="refs/heads/new-branch"),
        RefUpdate(old=ZERO_OID, new=git.get_oid("HEAD"), name="refs/heads/existing"),
        RefUpdate(old=ZERO_OID, new=ZERO_OID, name="refs/heads/missing"),
    ]
    with pytest.raises(BackendError):
        Hooks(repo).run_reference_transaction(updates)

    assert git.ref_targets() == refs_before
    assert read(git, "hook.log") == "prepared\naborted\n"
