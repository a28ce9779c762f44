import os
import shutil
from typing import Optional


def git_sh() -> Optional[str]:
    """Get the path to a shell suitable for running hooks.

    Returns:
      The path to the shell, or `None` if none could be found.
    """
    if os.name == "nt":
        # Prefer Git Bash, since that's how Git itself runs the hooks.
        git_bash = _find_git_bash()
        if git_bash is not None:
            return git_bash
        return shutil.which("bash.exe")
    return shutil.which("sh")


def _find_git_bash() -> Optional[str]:
    # Git is typically installed at `C:\Program Files\Git\cmd\git.exe`, with
    # only the `cmd` directory on the `PATH`. Git Bash lives in `bin`.
    git_path = shutil.which("git.exe")
    if git_path is None:
        return None
    git_dir = os.path.dirname(os.path.dirname(git_path))
    git_bash = os.path.join(git_dir, "bin", "bash.exe")
    if os.path.isfile(git_bash):
        return git_bash
    return None
