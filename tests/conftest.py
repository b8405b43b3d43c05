import importlib

import pytest


def import_required(module_name: str):
    """
    Import a project module with a clearer failure message than ModuleNotFoundError.
    """
    try:
        return importlib.import_module(module_name)
    except ModuleNotFoundError as e:
        pytest.fail(f"Required module '{module_name}.py' could not be imported. Original error: {e}")


@pytest.fixture
def maze_module():
    return import_required("maze")


@pytest.fixture
def db_module():
    return import_required("db")


@pytest.fixture
def main_module():
    return import_required("main")


@pytest.fixture(params=["json", "sqlite"])
def repo(request, tmp_path, db_module):
    if request.param == "json":
        store = db_module.JsonGameRepository(tmp_path / "game.json")
    else:
        store = db_module.SqliteGameRepository(tmp_path / "game.db")
    yield store
    store.close()


@pytest.fixture
def repo_path(tmp_path):
    return tmp_path / "game.json"


@pytest.fixture
def make_builder():
    """
    Factory for editor.MapBuilder; defaults to a 10x10 regular maze whose
    player starts at (1, 8) inside the 3x3 start room.
    """
    editor = import_required("editor")

    def _make(width: int = 10, height: int = 10, **kwargs):
        return editor.MapBuilder(width, height, **kwargs)

    return _make


@pytest.fixture
def open_map(make_builder):
    return make_builder().build()

