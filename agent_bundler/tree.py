"""Permission fix-ups for trees unpacked from registry tarballs."""

import os
import pathlib
import shutil
import stat


def make_tree_user_writable(root: pathlib.Path) -> list[pathlib.Path]:
    """Add the owner-write bit to every file and directory under ``root``.

    Registry tarballs can carry read-only modes; without this, the next build
    cannot overwrite or delete the bundle. Traversal uses an explicit LIFO work
    queue and never follows symlinks.

    :param root: Directory (or file) to fix up.
    :returns: Every path visited, in visit order.
    """

    visited: list[pathlib.Path] = []
    queue: list[pathlib.Path] = [root]
    while len(queue) > 0:
        current: pathlib.Path = queue.pop()
        st: os.stat_result = current.lstat()
        if stat.S_ISLNK(st.st_mode) is True:
            continue
        visited.append(current)
        if st.st_mode & stat.S_IWUSR == 0:
            current.chmod(stat.S_IMODE(st.st_mode) | stat.S_IWUSR)
        if stat.S_ISDIR(st.st_mode) is False:
            continue
        for child in sorted(current.iterdir()):
            queue.append(child)
    return visited


def remove_tree(root: pathlib.Path) -> None:
    """Delete ``root`` even if it holds read-only entries. Missing is fine."""

    if root.exists() is False and root.is_symlink() is False:
        return
    if root.is_dir() is True and root.is_symlink() is False:
        make_tree_user_writable(root)
        shutil.rmtree(root)
        return
    root.unlink()
