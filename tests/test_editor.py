from pathlib import Path

import pytest

from dbpam.editor import ExternalEditor, editor_command
from dbpam.errors import EditCancelled, PamError


def _script(tmp_path: Path, body: str) -> str:
    script = tmp_path / "fake-editor.sh"
    script.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    script.chmod(0o755)
    return str(script)


def test_editor_command_defaults_to_vi(monkeypatch) -> None:
    monkeypatch.delenv("EDITOR", raising=False)
    assert editor_command() == ["vi"]
    monkeypatch.setenv("EDITOR", "code --wait")
    assert editor_command() == ["code", "--wait"]


def test_saved_edit_returns_file_contents(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("EDITOR", _script(tmp_path, 'sleep 0.05\nprintf "edited" > "$1"'))
    suspended = []

    class _Suspend:
        def __enter__(self):
            suspended.append(True)

        def __exit__(self, *exc_info):
            return False

    assert ExternalEditor(_Suspend).edit("original") == "edited"
    assert suspended == [True]


def test_quit_without_saving_cancels(monkeypatch) -> None:
    monkeypatch.setenv("EDITOR", "true")
    with pytest.raises(EditCancelled):
        ExternalEditor().edit("original")


def test_failing_editor_cancels(monkeypatch) -> None:
    monkeypatch.setenv("EDITOR", "false")
    with pytest.raises(EditCancelled):
        ExternalEditor().edit("original")


def test_missing_editor_is_an_error(monkeypatch) -> None:
    monkeypatch.setenv("EDITOR", "/nonexistent/editor-binary")
    with pytest.raises(PamError, match="Failed to start editor"):
        ExternalEditor().edit("original")
