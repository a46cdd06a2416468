import pytest

from dbpam.commands import PamCommandExecutor
from dbpam.errors import EditCancelled
from dbpam.main import _ask_for_values, _build_parser
from dbpam.params import split_invocation
from conftest import FakeHandle


def test_run_passes_parameter_flags_through() -> None:
    args = _build_parser().parse_args(["run", "by_name", "--name", "Bob", "7"])
    assert args.command == "run"
    assert split_invocation(args.text) == ("by_name", ["7"], {"name": "Bob"})


def test_prompted_values_are_remembered(monkeypatch) -> None:
    answers = iter(["Bob", ""])
    monkeypatch.setattr("builtins.input", lambda prompt: next(answers))
    executor = PamCommandExecutor(FakeHandle())
    _ask_for_values(executor, ["name", "email"])
    assert executor.parameter_values == {"name": "Bob"}


def test_aborted_prompt_cancels(monkeypatch) -> None:
    def _eof(prompt: str) -> str:
        raise EOFError

    monkeypatch.setattr("builtins.input", _eof)
    with pytest.raises(EditCancelled, match="Aborted"):
        _ask_for_values(PamCommandExecutor(FakeHandle()), ["name"])
