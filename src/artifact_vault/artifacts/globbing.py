"""
Path glob matching for upload selectors and artifact name patterns.

Supports ``*`` and ``?`` within one path segment, ``[...]`` character
classes (``[!...]`` negates) and ``**`` as a whole segment matching zero
or more directories. Patterns always use ``/`` as the separator and are
relative to the workspace root.
"""

import os
import re
from functools import lru_cache
from pathlib import Path, PurePosixPath

from artifact_vault.core.exceptions import ValidationError

HIDDEN_PREFIX = "."
_MAGIC = re.compile(r"[*?\[]")


def has_magic(pattern: str) -> bool:
    """Return True if the pattern contains glob metacharacters."""
    return _MAGIC.search(pattern) is not None


def normalize_pattern(pattern: str) -> str:
    """
    Normalize a workspace-relative pattern.

    Strips ``./`` prefixes, collapses repeated separators and drops a
    trailing ``/``. A bare ``.`` selects the whole workspace.

    Raises:
        ValidationError: If the pattern is empty, absolute or escapes the root
    """
    raw = pattern.strip().replace("\\", "/")
    if not raw:
        raise ValidationError("Path pattern cannot be empty", field="pattern")
    if raw.startswith("/") or re.match(r"^[A-Za-z]:/", raw):
        raise ValidationError(
            f"Path pattern must be relative to the workspace: {pattern}",
            field="pattern",
        )

    segments = [s for s in raw.split("/") if s not in ("", ".")]
    if ".." in segments:
        raise ValidationError(
            f"Path pattern cannot escape the workspace: {pattern}",
            field="pattern",
        )
    if not segments:
        return "**"
    return "/".join(segments)


def _translate_segment(segment: str) -> str:
    """Translate one path segment to a regex fragment."""
    out = []
    i, n = 0, len(segment)
    while i < n:
        c = segment[i]
        i += 1
        if c == "*":
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            j = i
            if j < n and segment[j] == "!":
                j += 1
            if j < n and segment[j] == "]":
                j += 1
            while j < n and segment[j] != "]":
                j += 1
            if j >= n:
                out.append(re.escape(c))
                continue
            body = segment[i:j].replace("\\", "\\\\")
            if body.startswith("!"):
                body = "^" + body[1:]
            elif body.startswith("^"):
                body = "\\" + body
            out.append(f"[{body}]")
            i = j + 1
        else:
            out.append(re.escape(c))
    return "".join(out)


def translate(pattern: str) -> str:
    """Translate a normalized path glob to a full-match regular expression."""
    segments = pattern.split("/")
    last = len(segments) - 1
    regex = ""
    for index, segment in enumerate(segments):
        if segment == "**":
            regex += ".*" if index == last else "(?:[^/]*/)*"
            continue
        regex += _translate_segment(segment)
        if index != last:
            regex += "/"
    return rf"(?s:{regex})\Z"


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a normalized path glob."""
    return re.compile(translate(pattern))


def match_path(pattern: str, relative_path: str) -> bool:
    """Return True if a POSIX relative path matches the glob."""
    return compile_pattern(normalize_pattern(pattern)).match(relative_path) is not None


def match_name(pattern: str, name: str) -> bool:
    """Return True if an artifact name matches a name glob."""
    return compile_pattern(pattern).match(name) is not None


def is_hidden(relative_path: str) -> bool:
    """Return True if any component of the path is a hidden entry."""
    return any(part.startswith(HIDDEN_PREFIX) for part in relative_path.split("/"))


def _literal_base(pattern: str) -> str:
    """Leading segments of a pattern that contain no glob metacharacters."""
    literal = []
    for segment in pattern.split("/"):
        if has_magic(segment):
            break
        literal.append(segment)
    return "/".join(literal)


def _is_within(root: Path, path: Path) -> bool:
    try:
        path.resolve().relative_to(root)
    except ValueError:
        return False
    return True


def _walk_files(root: Path, base: Path, include_hidden: bool) -> list[tuple[str, Path]]:
    """List files under ``base`` as (relative posix path, absolute path)."""
    found: list[tuple[str, Path]] = []
    if base.is_file():
        rel = base.relative_to(root).as_posix()
        if (include_hidden or not is_hidden(rel)) and _is_within(root, base):
            found.append((rel, base))
        return found

    for dirpath, dirnames, filenames in os.walk(base, followlinks=False):
        current = Path(dirpath)
        if not include_hidden:
            dirnames[:] = [d for d in dirnames if not d.startswith(HIDDEN_PREFIX)]
        dirnames[:] = [d for d in dirnames if not (current / d).is_symlink()]
        dirnames.sort()
        for filename in sorted(filenames):
            if not include_hidden and filename.startswith(HIDDEN_PREFIX):
                continue
            path = current / filename
            if not path.is_file() or not _is_within(root, path):
                continue
            found.append((path.relative_to(root).as_posix(), path))
    return found


def _iter_entries(root: Path, base: Path, include_hidden: bool):
    """Yield (relative path, absolute path, is_dir) for ``base`` and everything below it."""
    if base != root:
        yield base.relative_to(root).as_posix(), base, base.is_dir()
    if not base.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(base, followlinks=False):
        current = Path(dirpath)
        if not include_hidden:
            dirnames[:] = [d for d in dirnames if not d.startswith(HIDDEN_PREFIX)]
        dirnames[:] = [d for d in dirnames if not (current / d).is_symlink()]
        dirnames.sort()
        for dirname in dirnames:
            path = current / dirname
            yield path.relative_to(root).as_posix(), path, True
        for filename in sorted(filenames):
            path = current / filename
            yield path.relative_to(root).as_posix(), path, False


def select_files(
    workspace: Path,
    include_patterns: list[str],
    exclude_patterns: list[str] | None = None,
    include_hidden: bool = False,
) -> dict[str, Path]:
    """
    Select workspace files using ordered include and exclude globs.

    Includes are evaluated in order; a matched directory contributes every
    file beneath it. Duplicates collapse by relative path. Excludes are
    applied after all includes, and an exclude that
    matches a directory removes everything beneath it. Hidden entries are
    skipped unless ``include_hidden`` is set. Symlinks resolving outside the
    workspace are skipped.

    Args:
        workspace: Root directory patterns are relative to
        include_patterns: Ordered include globs
        exclude_patterns: Exclude globs
        include_hidden: Whether dot-files and dot-directories are eligible

    Returns:
        Mapping of relative POSIX path to absolute file path, sorted by path
    """
    root = workspace.resolve()
    includes = [normalize_pattern(p) for p in include_patterns]
    excludes = [compile_pattern(normalize_pattern(p)) for p in (exclude_patterns or [])]

    candidates: dict[str, Path] = {}
    for pattern in includes:
        regex = compile_pattern(pattern)
        literal = _literal_base(pattern)
        base = root / literal if literal else root
        if not base.exists() or not _is_within(root, base):
            continue
        covered: set[str] = set()
        for rel, path, is_dir in _iter_entries(root, base, include_hidden):
            if not include_hidden and is_hidden(rel):
                continue
            if not regex.match(rel):
                continue
            if is_dir:
                if _under_any(rel, covered):
                    continue
                covered.add(rel)
                for file_rel, file_path in _walk_files(root, path, include_hidden):
                    candidates.setdefault(file_rel, file_path)
            elif path.is_file() and _is_within(root, path):
                candidates.setdefault(rel, path)

    if excludes:
        candidates = {
            rel: path
            for rel, path in candidates.items()
            if not _is_excluded(rel, excludes)
        }

    return dict(sorted(candidates.items()))


def _under_any(relative_path: str, directories: set[str]) -> bool:
    """True if a parent directory of the path is in ``directories``."""
    parts = relative_path.split("/")
    return any("/".join(parts[:i]) in directories for i in range(1, len(parts)))


def _is_excluded(relative_path: str, excludes: list[re.Pattern[str]]) -> bool:
    """True if the path or any of its parent directories matches an exclude."""
    parts = PurePosixPath(relative_path).parts
    prefixes = ["/".join(parts[: i + 1]) for i in range(len(parts))]
    return any(regex.match(prefix) for regex in excludes for prefix in prefixes)
