import os
import pytest
from pathlib import Path
from bpff.config.workspace import (
    HOME_ENV,
    MAX_WORKSPACE_NAME_LEN,
    Workspace,
    base_dir,
    resolve_workspace,
    shorten_path,
    validate_roots,
    workspace_name,
)


def test_workspace_layout(tmp_path):
    ws = Workspace(tmp_path / "ws").create()
    assert ws.settings_file == tmp_path / "ws" / "settings.yaml"
    assert ws.checkpoint_file.name == "checkpoint.json"
    assert ws.log_file.name == "bpff.log"
    for directory in (ws.tmp_dir, ws.error_dir, ws.kept_dir):
        assert directory.is_dir()


def test_validate_roots_resolves_and_dedupes(tmp_path):
    (tmp_path / "a").mkdir()
    roots = validate_roots([str(tmp_path / "a"), f'"{tmp_path / "a"}"', str(tmp_path / "a" / ".."), "  "])
    assert roots == [(tmp_path / "a").resolve(), tmp_path.resolve()]


def test_validate_roots_rejects_files_and_missing(tmp_path):
    f = tmp_path / "file.mp4"
    f.write_text("x")
    with pytest.raises(ValueError, match="Not a directory"):
        validate_roots([str(f)])
    with pytest.raises(ValueError):
        validate_roots([str(tmp_path / "missing")])


def test_workspace_name_replaces_separators():
    assert workspace_name([Path("/srv/media/movies")]) == "srv_media_movies"
    assert workspace_name([Path("/a"), Path("/b/c")]) == "a+b_c"
    assert workspace_name([Path("/")]) == "root"


def test_workspace_name_is_shortened_with_digest():
    long_root = Path("/" + "/".join(["directory"] * 30))
    name = workspace_name([long_root])
    assert len(name) <= MAX_WORKSPACE_NAME_LEN
    other = workspace_name([Path(str(long_root) + "x")])
    assert name != other


def test_base_dir_honors_env(tmp_path, monkeypatch):
    monkeypatch.setenv(HOME_ENV, str(tmp_path / "home"))
    assert base_dir() == tmp_path / "home"


def test_base_dir_defaults_to_user_data_dir(monkeypatch):
    monkeypatch.delenv(HOME_ENV, raising=False)
    monkeypatch.setattr("bpff.config.workspace.user_data_dir", lambda app, author: "/data/bpff")
    assert base_dir() == Path("/data/bpff")


def test_resolve_workspace_creates_directories(tmp_path):
    ws = resolve_workspace([Path("/srv/media")], base=tmp_path)
    assert ws.root == tmp_path / "srv_media"
    assert ws.tmp_dir.is_dir()


def test_shorten_path():
    short = Path("/srv/a.mp4")
    assert shorten_path(short) == str(short)
    long_path = Path("/very/long/prefix/that/goes/on/and/on/clip.mp4")
    shortened = shorten_path(long_path, keep=10)
    assert shortened == f"/very/long...{os.sep}clip.mp4"
