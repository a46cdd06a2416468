from contextlib import AbstractContextManager, nullcontext
import os
from pathlib import Path
import shlex
import subprocess
import tempfile
from typing import Callable, Protocol

from dbpam.errors import EditCancelled, PamError
from dbpam.log import get_logger


class BlockingEditor(Protocol):
    def edit(self, content: str, suffix: str = ".txt") -> str: ...


def editor_command() -> list[str]:
    return shlex.split(os.environ.get("EDITOR", "").strip() or "vi")


class ExternalEditor:
    """Runs ``$EDITOR`` on a temp file and returns the saved text.

    ``suspend`` hands the terminal back to the editor for the duration of the
    call (``App.suspend`` under Textual).
    """

    def __init__(
        self,
        suspend: Callable[[], AbstractContextManager[object]] | None = None,
    ) -> None:
        self._suspend = suspend or nullcontext
        self._logger = get_logger(__name__)

    def edit(self, content: str, suffix: str = ".txt") -> str:
        handle, name = tempfile.mkstemp(prefix="pam-", suffix=suffix)
        path = Path(name)
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as file:
                file.write(content)
            before = path.stat().st_mtime_ns
            command = [*editor_command(), str(path)]
            self._logger.debug("editor_started", command=command[0])
            try:
                with self._suspend():
                    completed = subprocess.run(command, check=False)
            except OSError as error:
                raise PamError(f"Failed to start editor {command[0]}: {error}") from error
            if completed.returncode != 0:
                raise EditCancelled(f"Editor exited with status {completed.returncode}")
            if path.stat().st_mtime_ns == before:
                raise EditCancelled()
            return path.read_text(encoding="utf-8")
        finally:
            path.unlink(missing_ok=True)
