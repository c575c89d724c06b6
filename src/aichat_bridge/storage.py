"""Read-mostly file access for session discovery.

Providers never touch the filesystem directly; they go through a
`WorkspaceFS` so the same parsing code works against the local machine and
against a container reached with `docker exec`. Every method degrades to an
empty result (or None) when a root is missing or a file is unreadable.
"""

import fnmatch
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from .execution import Executor

logger = logging.getLogger(__name__)

MAX_SEARCH_FILES = 100


@dataclass
class FileStat:
    path: Path
    mtime: float
    size: int


class WorkspaceFS:
    """Interface for the file operations session providers need."""

    def scan(self, root: Path, name_pattern: str, depth: int | None = None) -> list[FileStat]:
        """List files under `root` whose name matches `name_pattern`.

        `depth` is the exact nesting level (1 = direct children); None means any.
        Results are sorted by path.
        """
        raise NotImplementedError

    def read_text(self, path: Path) -> str | None:
        raise NotImplementedError

    def read_first_line(self, path: Path) -> str | None:
        raise NotImplementedError

    def exists(self, path: Path) -> bool:
        raise NotImplementedError

    def is_dir(self, path: Path) -> bool:
        raise NotImplementedError

    def remove(self, path: Path) -> str | None:
        """Delete one file. Returns an error message, or None on success."""
        raise NotImplementedError

    def remove_tree(self, path: Path) -> None:
        """Delete a directory tree; a missing directory is not an error."""
        raise NotImplementedError

    def grep(self, roots: list[Path], query: str) -> list[tuple[Path, int]]:
        """Return (file, match count) for files containing `query`, case-insensitively."""
        raise NotImplementedError


class LocalFS(WorkspaceFS):
    """WorkspaceFS backed by the local filesystem."""

    def scan(self, root: Path, name_pattern: str, depth: int | None = None) -> list[FileStat]:
        if not root.is_dir():
            return []

        results = []
        try:
            candidates = sorted(root.rglob(name_pattern))
        except OSError as e:
            logger.warning("Failed to scan %s: %s", root, e)
            return []

        for path in candidates:
            if depth is not None and len(path.relative_to(root).parts) != depth:
                continue
            try:
                if not path.is_file():
                    continue
                st = path.stat()
            except OSError:
                continue
            results.append(FileStat(path=path, mtime=st.st_mtime, size=st.st_size))
        return results

    def read_text(self, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Failed to read %s: %s", path, e)
            return None

    def read_first_line(self, path: Path) -> str | None:
        try:
            with path.open(encoding="utf-8", errors="replace") as f:
                return f.readline().rstrip("\n")
        except OSError:
            return None

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def remove(self, path: Path) -> str | None:
        try:
            path.unlink()
        except FileNotFoundError:
            return "File not found"
        except OSError as e:
            return f"Failed to delete {path.name}: {e.strerror or e}"
        return None

    def remove_tree(self, path: Path) -> None:
        shutil.rmtree(path, ignore_errors=True)

    def grep(self, roots: list[Path], query: str) -> list[tuple[Path, int]]:
        if not query:
            return []
        pattern = re.compile(re.escape(query), re.IGNORECASE)
        matches = []
        for root in roots:
            if not root.is_dir():
                continue
            for path in sorted(root.rglob("*")):
                if len(matches) >= MAX_SEARCH_FILES:
                    return matches
                if not path.is_file():
                    continue
                text = self.read_text(path)
                if not text:
                    continue
                count = len(pattern.findall(text))
                if count:
                    matches.append((path, count))
        return matches


class ContainerFS(WorkspaceFS):
    """WorkspaceFS that runs find/cat/rm/rg through an Executor.

    Each call is one blocking round trip; callers issue them sequentially.
    """

    def __init__(self, executor: Executor, user: str | None = None):
        self.executor = executor
        self.user = user

    def _run(self, argv: list[str]):
        return self.executor.run(argv, user=self.user)

    def scan(self, root: Path, name_pattern: str, depth: int | None = None) -> list[FileStat]:
        argv = ["find", str(root)]
        if depth is not None:
            argv.extend(["-mindepth", str(depth), "-maxdepth", str(depth)])
        argv.extend(["-type", "f", "-name", name_pattern, "-printf", "%p\\t%T@\\t%s\\n"])

        result = self._run(argv)
        if result.exit_code != 0 and not result.stdout.strip():
            return []

        stats = []
        for line in result.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 3:
                continue
            path = Path(parts[0])
            # find prints paths it could stat; guard against odd filenames anyway
            if not fnmatch.fnmatch(path.name, name_pattern):
                continue
            try:
                mtime = float(parts[1])
            except ValueError:
                mtime = 0.0
            try:
                size = int(parts[2])
            except ValueError:
                size = 0
            stats.append(FileStat(path=path, mtime=mtime, size=size))
        return sorted(stats, key=lambda s: str(s.path))

    def read_text(self, path: Path) -> str | None:
        result = self._run(["cat", str(path)])
        if result.exit_code != 0:
            return None
        return result.stdout

    def read_first_line(self, path: Path) -> str | None:
        result = self._run(["head", "-1", str(path)])
        if result.exit_code != 0:
            return None
        return result.stdout.rstrip("\n")

    def exists(self, path: Path) -> bool:
        return self._run(["test", "-f", str(path)]).exit_code == 0

    def is_dir(self, path: Path) -> bool:
        return self._run(["test", "-d", str(path)]).exit_code == 0

    def remove(self, path: Path) -> str | None:
        if not self.exists(path):
            return "File not found"
        result = self._run(["rm", "-f", str(path)])
        if result.exit_code != 0:
            return result.stderr.strip() or f"Failed to delete {path.name}"
        return None

    def remove_tree(self, path: Path) -> None:
        self._run(["rm", "-rf", str(path)])

    def grep(self, roots: list[Path], query: str) -> list[tuple[Path, int]]:
        if not query:
            return []
        argv = ["rg", "-c", "-i", "-F", "--no-messages", "--", query, *[str(r) for r in roots]]
        result = self._run(argv)
        # rg exits 1 when nothing matched and 2 on errors; partial output is still usable
        matches = []
        for line in result.stdout.splitlines():
            file_part, _, count = line.rpartition(":")
            if not file_part:
                continue
            try:
                matches.append((Path(file_part), int(count)))
            except ValueError:
                continue
            if len(matches) >= MAX_SEARCH_FILES:
                break
        return matches
