import os
import hashlib
from pathlib import Path
from typing import List, Optional
from platformdirs import user_data_dir

APP_NAME = "bpff"
APP_AUTHOR = "bpff"
HOME_ENV = "BPFF_HOME"
MAX_WORKSPACE_NAME_LEN = 120


class Workspace:
    """Per-root-set directory holding settings, checkpoint, log, temp outputs and error records."""

    def __init__(self, root: Path):
        self.root = root
        self.settings_file = root / "settings.yaml"
        self.checkpoint_file = root / "checkpoint.json"
        self.log_file = root / "bpff.log"
        self.tmp_dir = root / "tmp"
        self.error_dir = root / "error"
        self.kept_dir = root / "encoded"

    def create(self) -> "Workspace":
        for directory in (self.root, self.tmp_dir, self.error_dir, self.kept_dir):
            directory.mkdir(parents=True, exist_ok=True)
        return self


def _strip_wrapping_quotes(value: str) -> str:
    trimmed = value.strip()
    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] and trimmed[0] in ('"', "'"):
        return trimmed[1:-1]
    return trimmed


def validate_roots(entries: List[str]) -> List[Path]:
    """Resolves directory arguments, dropping duplicates. Raises ValueError for non-directories."""
    roots: List[Path] = []
    seen = set()
    for entry in entries:
        cleaned = _strip_wrapping_quotes(entry)
        if not cleaned:
            continue
        path = Path(cleaned).expanduser()
        if not path.is_dir():
            raise ValueError(f"Not a directory: {entry}")
        resolved = path.resolve()
        if resolved not in seen:
            seen.add(resolved)
            roots.append(resolved)
    return roots


def base_dir() -> Path:
    override = os.getenv(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path(user_data_dir(APP_NAME, APP_AUTHOR))


def workspace_name(roots: List[Path]) -> str:
    """Root paths with separators replaced by '_' and drive colons dropped."""
    parts = []
    for root in roots:
        text = str(root).replace(":", "")
        text = text.replace(os.sep, "_").replace("/", "_").strip("_")
        parts.append(text or "root")
    name = "+".join(parts)
    if len(name) > MAX_WORKSPACE_NAME_LEN:
        digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:12]
        name = f"{name[:MAX_WORKSPACE_NAME_LEN - 13]}_{digest}"
    return name


def resolve_workspace(roots: List[Path], base: Optional[Path] = None) -> Workspace:
    """Creates (if needed) and returns the workspace for this set of roots."""
    return Workspace((base or base_dir()) / workspace_name(roots)).create()


def shorten_path(path: Path, keep: int = 20) -> str:
    """First `keep` characters, '...', then the last component."""
    text = str(path)
    if len(text) <= keep + len(path.name) + 4:
        return text
    return f"{text[:keep]}...{os.sep}{path.name}"
