"""Read and publish the shared snapshot file through a git ref.

The snapshot lives on a dedicated ref (by default ``refs/worklog/data``)
that holds nothing but the data file.  Reading fetches the ref into a local
tracking ref and runs ``git show <ref>:<path>``.  The working tree is never
touched.  Publishing commits the file in a temporary detached worktree and
pushes ``HEAD`` to the ref.

Tracking refs:

* ``refs/<x>`` (explicit ref) -> ``refs/worklog/remotes/<remote>/<x>``
* ``<branch>`` (plain branch) -> ``refs/remotes/<remote>/<branch>``

Explicit refs stay out of ``refs/remotes/`` so they cannot collide with a
real remote-tracking branch of the same name.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from ..core.runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

_REFS = "refs/"


class SnapshotError(Exception):
    """The snapshot ref could not be read or published safely."""


@dataclass(frozen=True)
class GitTarget:
    remote: str = "origin"
    branch: str = "refs/worklog/data"

    @property
    def push_ref(self) -> str:
        if self.branch.startswith(_REFS):
            return self.branch
        return f"refs/heads/{self.branch}"


def remote_tracking_ref(remote: str, branch: str) -> str:
    """Local ref that mirrors *branch* of *remote*."""
    if branch.startswith(_REFS):
        return f"refs/worklog/remotes/{remote}/{branch[len(_REFS):]}"
    return f"refs/remotes/{remote}/{branch}"


class GitSnapshotTransport:
    """Git plumbing for the snapshot ref.

    Args:
        runner: Runner for the ``git`` binary.
        cwd: Directory inside the repository.
    """

    def __init__(
        self, runner: CommandRunner | None = None, cwd: str | None = None
    ):
        self.runner = runner or CommandRunner(binary="git", cwd=cwd)

    def _git(self, *args: str) -> CommandResult:
        return self.runner.run(list(args), retry=False)

    def _git_ok(self, *args: str) -> str:
        result = self._git(*args)
        if not result.ok:
            raise SnapshotError(
                f"git {' '.join(args[:2])} failed: {result.error}"
            )
        return result.stdout

    def repo_root(self) -> Path:
        return Path(self._git_ok("rev-parse", "--show-toplevel").strip())

    def relative_path(self, data_file: str) -> str:
        root = self.repo_root().resolve()
        return Path(os.path.relpath(Path(data_file).resolve(), root)).as_posix()

    def ref_exists(self, ref: str) -> bool:
        return self._git("show-ref", "--verify", "--quiet", ref).ok

    def remote_ref_exists(self, target: GitTarget) -> bool:
        result = self._git(
            "ls-remote", "--exit-code", target.remote, target.branch
        )
        return result.ok and bool(result.stdout.strip())

    def fetch_target_ref(self, target: GitTarget) -> tuple[bool, str]:
        """Fetch *target* into its tracking ref.

        Returns:
            ``(has_remote, tracking_ref)``.

        Raises:
            SnapshotError: If the remote ref exists but could not be
                fetched.  Continuing would publish an orphan history over it.
        """
        tracking = remote_tracking_ref(target.remote, target.branch)
        if not target.branch.startswith(_REFS):
            self._git_ok("fetch", target.remote, target.branch)
            return self.ref_exists(tracking), tracking

        fetched = self._git(
            "fetch", target.remote, f"+{target.branch}:{tracking}"
        )
        if not fetched.ok:
            if self.remote_ref_exists(target):
                raise SnapshotError(
                    f"Failed to fetch existing remote ref {target.branch} "
                    f"from {target.remote}: {fetched.error}"
                )
            logger.debug(
                "Remote ref %s not found on %s", target.branch, target.remote
            )
            return False, tracking

        has_remote = self.ref_exists(tracking)
        if not has_remote and self.remote_ref_exists(target):
            raise SnapshotError(
                f"Failed to create local tracking ref for {target.branch} "
                f"from {target.remote}"
            )
        return has_remote, tracking

    def read_remote_snapshot(
        self, data_file: str, target: GitTarget
    ) -> str | None:
        """Return the snapshot content at *target*, or ``None`` if absent."""
        relative = self.relative_path(data_file)
        has_remote, tracking = self.fetch_target_ref(target)
        if not has_remote:
            return None
        shown = self._git("show", f"{tracking}:{relative}")
        if not shown.ok:
            logger.debug("%s not present on %s", relative, tracking)
            return None
        return shown.stdout

    @contextmanager
    def _temp_worktree(self, target: GitTarget) -> Iterator[Path]:
        root = self.repo_root()
        work_dir = root / ".worklog"
        has_remote, tracking = self.fetch_target_ref(target)
        work_dir.mkdir(parents=True, exist_ok=True)
        tmp_root = Path(tempfile.mkdtemp(prefix="tmp-worktree-", dir=work_dir))
        worktree = tmp_root / "wt"
        try:
            self._git_ok(
                "worktree",
                "add",
                "--detach",
                str(worktree),
                tracking if has_remote else "HEAD",
            )
            if not has_remote:
                branch = target.branch
                if branch.startswith(_REFS):
                    branch = branch[len(_REFS):]
                self._git_ok("-C", str(worktree), "checkout", "--orphan", branch)
                self._git("-C", str(worktree), "rm", "-rf", "--quiet", ".")
                self._git("-C", str(worktree), "clean", "-fdx")
            yield worktree
        finally:
            self._git("worktree", "remove", "--force", str(worktree))
            shutil.rmtree(tmp_root, ignore_errors=True)

    def push_snapshot(
        self, data_file: str, message: str, target: GitTarget
    ) -> bool:
        """Commit *data_file* alone on *target* and push it.

        Returns:
            ``True`` if a commit was pushed, ``False`` when the file is
            missing or unchanged on the ref.

        Raises:
            SnapshotError: If a git step fails.
        """
        source = Path(data_file).resolve()
        if not source.exists():
            return False
        relative = self.relative_path(data_file)

        with self._temp_worktree(target) as worktree:
            tracked = self._git("-C", str(worktree), "ls-files", "-z")
            others = [
                p for p in tracked.stdout.split("\0") if p and p != relative
            ]
            for path in others:
                self._git("-C", str(worktree), "rm", "-r", "--quiet", "--", path)

            destination = worktree / relative
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)

            self._git_ok("-C", str(worktree), "add", "-f", "--", relative)
            staged = self._git_ok(
                "-C", str(worktree), "diff", "--cached", "--name-only"
            )
            if not staged.strip():
                logger.info("Snapshot on %s already up to date", target.branch)
                return False
            self._git_ok("-C", str(worktree), "commit", "-m", message)
            self._git_ok(
                "-C",
                str(worktree),
                "push",
                target.remote,
                f"HEAD:{target.push_ref}",
            )
        logger.info("Pushed snapshot to %s %s", target.remote, target.push_ref)
        return True
