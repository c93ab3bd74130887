"""Running main.py directly serves the app with uvicorn."""

import runpy
from pathlib import Path

import uvicorn

from app.config import HOST, PORT


def test_running_main_starts_uvicorn(monkeypatch):
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    runpy.run_path(str(Path(__file__).resolve().parents[1] / "main.py"), run_name="__main__")

    assert calls == [("main:app", {"host": HOST, "port": PORT})]
