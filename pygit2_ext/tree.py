"""Lower-level tree operations.

Trees are immutable, so "editing" one means writing new tree objects for the
edited directory and each of its ancestors. Paths are always relative to the
root of the tree and use `/` as the separator, regardless of platform.
"""
import logging
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

import pygit2

TreeEntryValue = Optional[Tuple[pygit2.Oid, int]]
"""The object ID and file mode of a tree entry, or `None` to remove it."""


def _get_entries(tree: Optional[pygit2.Tree]) -> Dict[str, pygit2.Object]:
    if tree is None:
        return {}
    return {entry.name: entry for entry in tree}


def _as_tree(entry: Optional[pygit2.Object]) -> Optional[pygit2.Tree]:
    if isinstance(entry, pygit2.Tree):
        return entry
    return None


def _collect_changed_paths(
    acc: List[str],
    prefix: str,
    lhs: Optional[pygit2.Tree],
    rhs: Optional[pygit2.Tree],
) -> None:
    lhs_entries = _get_entries(lhs)
    rhs_entries = _get_entries(rhs)
    for name in set(lhs_entries) | set(rhs_entries):
        lhs_entry = lhs_entries.get(name)
        rhs_entry = rhs_entries.get(name)
        path = prefix + name
        lhs_tree = _as_tree(lhs_entry)
        rhs_tree = _as_tree(rhs_entry)

        if lhs_tree is None and rhs_tree is None:
            # Added, removed or changed file.
            if (
                lhs_entry is None
                or rhs_entry is None
                or lhs_entry.id != rhs_entry.id
                or lhs_entry.filemode != rhs_entry.filemode
            ):
                acc.append(path)

        elif lhs_entry is None or rhs_entry is None:
            # Added or removed directory: everything underneath it changed.
            _collect_changed_paths(acc, path + "/", lhs_tree, rhs_tree)

        elif lhs_tree is None or rhs_tree is None:
            # A file was replaced by a directory, or the other way around.
            _collect_changed_paths(acc, path + "/", lhs_tree, rhs_tree)
            acc.append(path)

        else:
            same_contents = lhs_entry.id == rhs_entry.id
            same_mode = lhs_entry.filemode == rhs_entry.filemode
            if not same_contents:
                _collect_changed_paths(acc, path + "/", lhs_tree, rhs_tree)
            if not same_mode:
                acc.append(path)


def get_changed_paths_between_trees(
    lhs: Optional[pygit2.Tree], rhs: Optional[pygit2.Tree]
) -> Set[str]:
    """Get the paths which differ between two trees.

    Unlike a diff, this doesn't load any blobs, and doesn't try to detect
    renames.

    Args:
      lhs: The old tree, or `None` for the empty tree.
      rhs: The new tree, or `None` for the empty tree.

    Returns:
      The paths of the files which were added, removed, or changed (in
      contents or file mode). Directories are only included themselves if
      their file mode changed, or if they replaced a file (or were replaced
      by one).
    """
    acc: List[str] = []
    _collect_changed_paths(acc, "", lhs, rhs)
    return set(acc)


def _split_path(path: str) -> List[str]:
    return [component for component in path.split("/") if component]


def _remove_entry_if_exists(builder: pygit2.TreeBuilder, name: str) -> None:
    # Removing an entry which isn't there is an error in libgit2, but the
    # path may well be one which only exists on one side of a change.
    if builder.get(name) is not None:
        builder.remove(name)


def rebuild_tree(
    repo: pygit2.Repository,
    tree: Optional[pygit2.Tree],
    entries: Mapping[str, TreeEntryValue],
) -> pygit2.Oid:
    """Write a copy of `tree` with the given entries inserted or removed.

    Args:
      repo: The Git repository.
      tree: The tree to start from, or `None` to start from the empty tree.
      entries: Maps paths (which may contain slashes) to the object ID and
        file mode to store there, or to `None` to remove the path. Existing
        entries are overwritten. Missing intermediate directories are
        created, and directories left empty are removed.

    Returns:
      The OID of the new tree.
    """
    file_entries: Dict[str, TreeEntryValue] = {}
    dir_entries: Dict[str, Dict[str, TreeEntryValue]] = {}
    for (path, value) in entries.items():
        components = _split_path(path)
        if not components:
            logging.debug(f"Ignoring empty path when rebuilding tree: {path!r}")
        elif len(components) == 1:
            file_entries[components[0]] = value
        else:
            dir_entries.setdefault(components[0], {})["/".join(components[1:])] = value

    if tree is not None:
        builder = repo.TreeBuilder(tree)
    else:
        builder = repo.TreeBuilder()

    for (name, value) in file_entries.items():
        if value is None:
            _remove_entry_if_exists(builder, name)
        else:
            (oid, filemode) = value
            builder.insert(name, oid, filemode)

    for (name, dir_value) in dir_entries.items():
        existing_tree = _as_tree(builder.get(name))
        new_tree_oid = rebuild_tree(repo, existing_tree, dir_value)
        if len(repo[new_tree_oid].peel(pygit2.Tree)) == 0:
            _remove_entry_if_exists(builder, name)
        else:
            builder.insert(name, new_tree_oid, pygit2.enums.FileMode.TREE)

    return builder.write()


def filter_tree(
    repo: pygit2.Repository, tree: pygit2.Tree, paths: Sequence[str]
) -> pygit2.Oid:
    """Write a tree containing only the given paths of `tree`.

    Paths which don't appear in `tree` are ignored.
    """
    entries: Dict[str, TreeEntryValue] = {}
    for path in paths:
        try:
            entry = tree[path]
        except KeyError:
            entries[path] = None
        else:
            entries[path] = (entry.id, entry.filemode)
    return rebuild_tree(repo, None, entries)
