import os
import re
import tempfile
import threading
from typing import List, Optional

from ..config import get_settings
from ..errors import ClientInputError

DEFAULT_WORKFLOW = "Default_Comfy_Workflow.json"

_ILLEGAL_CHARS = re.compile(r'[/\\?<>:*|"\x00-\x1f\x80-\x9f]')
_RESERVED_NAMES = re.compile(r"^\.+$")
_WINDOWS_RESERVED = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)
_WINDOWS_TRAILING = re.compile(r"[. ]+$")
MAX_NAME_BYTES = 255


def sanitize_filename(name: str) -> str:
    """Turn arbitrary input into a bare file name that stays inside the store.

    Illegal characters are dropped rather than replaced, so ``../x.json``
    becomes ``..x.json``. An empty result is rejected.
    """
    cleaned = _ILLEGAL_CHARS.sub("", str(name))
    cleaned = _RESERVED_NAMES.sub("", cleaned)
    cleaned = _WINDOWS_RESERVED.sub("", cleaned)
    cleaned = _WINDOWS_TRAILING.sub("", cleaned)
    cleaned = cleaned.encode("utf-8")[:MAX_NAME_BYTES].decode("utf-8", errors="ignore")
    if not cleaned:
        raise ClientInputError(f"Invalid workflow file name: {name!r}")
    return cleaned


class WorkflowStore:
    """Named ComfyUI workflow documents kept as JSON files in one directory."""

    def __init__(self, directory: str) -> None:
        self.directory = directory
        os.makedirs(self.directory, exist_ok=True)

    def _path(self, name: str) -> str:
        return os.path.join(self.directory, sanitize_filename(name))

    # ---------- queries ----------
    def list_workflows(self) -> List[str]:
        names = [
            entry
            for entry in os.listdir(self.directory)
            if not entry.startswith(".") and entry.lower().endswith(".json")
        ]
        return sorted(names, key=lambda entry: (entry.casefold(), entry))

    def read_workflow(self, name: str) -> str:
        path = self._path(name)
        if not os.path.exists(path):
            path = os.path.join(self.directory, DEFAULT_WORKFLOW)
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()

    # ---------- mutations ----------
    def save_workflow(self, name: str, workflow: str) -> None:
        """Write ``workflow`` so readers see either the old or the new file, never a partial one."""
        path = self._path(name)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(workflow)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete_workflow(self, name: str) -> None:
        path = self._path(name)
        if os.path.exists(path):
            os.unlink(path)


_STORE: Optional[WorkflowStore] = None
_STORE_LOCK = threading.Lock()


def get_workflow_store() -> WorkflowStore:
    """Return a singleton WorkflowStore for the configured directory.

    Created lazily on first call; a module-level lock keeps concurrent first
    calls from racing on directory creation.
    """
    global _STORE
    if _STORE is not None:
        return _STORE
    with _STORE_LOCK:
        if _STORE is None:
            _STORE = WorkflowStore(get_settings().workflows_dir)
    return _STORE
