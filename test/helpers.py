import os
import stat
import subprocess
from typing import Dict, List, Optional

import py
import pygit2

from pygit2_ext.identity import Identity, SignatureResolver

DUMMY_NAME = "Testy McTestface"
DUMMY_EMAIL = "test@example.com"
DUMMY_DATE = "Wed 29 Oct 12:34:56 2020 PDT"

COMMITTER = Identity(
    name="Rewriter McRewriteface", email="rewriter@example.com", time=1000, offset=0
)


class Git:
    def __init__(self, path: py.path.local, git_executable: str) -> None:
        self.path = path
        self.git_executable = git_executable

    def init_repo(self, make_initial_commit: bool = True) -> None:
        self.run("init")
        self.run("symbolic-ref", ["HEAD", "refs/heads/master"])
        self.run("config", ["user.name", DUMMY_NAME])
        self.run("config", ["user.email", DUMMY_EMAIL])

        # Don't pick up signing configuration from the environment.
        self.run("config", ["commit.gpgsign", "false"])

        if make_initial_commit:
            self.commit_file(name="initial", time=0)

    def get_repo(self) -> pygit2.Repository:
        return pygit2.Repository(str(self.path))

    def get_resolver(self, env: Optional[Dict[str, str]] = None) -> SignatureResolver:
        """Get a resolver which always uses `COMMITTER` as the committer."""
        return SignatureResolver(
            self.get_repo(),
            env=env if env is not None else {},
            clock=lambda: 1000,
            committer=COMMITTER,
        )

    def run(
        self,
        command: str,
        args: Optional[List[str]] = None,
        time: int = 0,
        check: bool = True,
    ) -> str:
        if args is None:
            args = []
        args = [self.git_executable, command, *args]

        # Required for determinism, as these values will be baked into the commit
        # hash.
        date = f"{DUMMY_DATE} -{time:02d}00"
        env = {
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_DATE": date,
            "GIT_EDITOR": "true",
            "GIT_CONFIG_NOSYSTEM": "1",
            "HOME": str(self.path),
            "PATH": os.environ.get("PATH", ""),
        }

        result = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            env=env,
            check=check,
        )
        return result.stdout.decode()

    def commit_file(self, name: str, time: int, contents: Optional[str] = None) -> None:
        path = os.path.join(str(self.path), f"{name}.txt")
        with open(path, "w") as f:
            if contents is None:
                f.write(f"{name} contents\n")
            else:
                f.write(contents)
                f.write("\n")
        self.run("add", ["."])
        self.run("commit", ["-m", f"create {name}.txt"], time=time)

    def write_file(self, name: str, contents: str) -> None:
        path = os.path.join(str(self.path), f"{name}.txt")
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(contents)

    def get_oid(self, rev: str) -> pygit2.Oid:
        return self.get_repo().revparse_single(rev).peel(pygit2.Commit).id

    def write_script(self, path: str, body: str) -> str:
        """Write an executable shell script, returning its absolute path."""
        path = os.path.join(str(self.path), path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write("#!/bin/sh\n")
            f.write(body)
        os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    def write_hook(self, name: str, body: str) -> str:
        return self.write_script(os.path.join(".git", "hooks", name), body)

    def unreachable_commits(self) -> List[str]:
        output = self.run("fsck", ["--unreachable", "--no-reflogs"], check=False)
        return [
            line.split()[2]
            for line in output.splitlines()
            if line.startswith("unreachable commit ")
        ]

    def ref_targets(self) -> str:
        return self.run("for-each-ref", ["--format=%(refname) %(objectname)"])
