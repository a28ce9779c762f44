from typing import Iterator

import py
import pygit2
import pytest
from _pytest.config.argparsing import Parser
from _pytest.fixtures import SubRequest

from helpers import Git

ISOLATED_CONFIG_LEVELS = [
    pygit2.enums.ConfigLevel.SYSTEM,
    pygit2.enums.ConfigLevel.XDG,
    pygit2.enums.ConfigLevel.GLOBAL,
]


def pytest_addoption(parser: Parser) -> None:
    parser.addoption(
        "--git-path",
        type=str,
        default=None,
        help="The path to the Git executable to use. If not provided, uses the system Git.",
    )


@pytest.fixture
def git_executable(request: SubRequest) -> str:
    git_executable: str = request.config.getoption("--git-path")
    if git_executable is not None:
        return git_executable
    else:
        return "git"


@pytest.fixture(autouse=True)
def isolated_config(tmpdir: py.path.local) -> Iterator[None]:
    """Keep `pygit2` from reading the user's global Git configuration.

    The `git` subprocess is isolated through its environment (see
    `Git.run`), but `pygit2` resolves the global configuration in-process.
    """
    old_paths = {
        level: pygit2.settings.search_path[level] for level in ISOLATED_CONFIG_LEVELS
    }
    for level in ISOLATED_CONFIG_LEVELS:
        pygit2.settings.search_path[level] = str(tmpdir)
    try:
        yield
    finally:
        for (level, path) in old_paths.items():
            pygit2.settings.search_path[level] = path


@pytest.fixture
def git(tmpdir: py.path.local, git_executable: str) -> Iterator[Git]:
    with tmpdir.as_cwd():
        yield Git(tmpdir, git_executable=git_executable)
