import sys

import pytest

from storagefs.__main__ import main
from storagefs.config import get_settings
from storagefs.errors import CapabilityMismatchError


@pytest.fixture()
def local_root(monkeypatch, tmp_path):
    monkeypatch.setenv("STORAGEFS_LOCAL_ROOT", str(tmp_path))
    monkeypatch.setenv("STORAGEFS_ENV_FILE", str(tmp_path / "no.env"))
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


def run(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["storagefs", *args])
    main()


def test_put_ls_cat_rm(monkeypatch, capsys, local_root):
    source = local_root / "source.txt"
    source.write_text("hello cli")
    run(monkeypatch, "put", str(source), "dir/a.txt")
    assert (local_root / "dir" / "a.txt").read_text() == "hello cli"

    capsys.readouterr()
    run(monkeypatch, "ls", "-r")
    assert capsys.readouterr().out.splitlines() == ["/dir/", "/dir/a.txt", "/source.txt"]

    run(monkeypatch, "cat", "dir/a.txt")
    assert capsys.readouterr().out == "hello cli"

    run(monkeypatch, "rm", "-r", "dir")
    assert not (local_root / "dir").exists()


def test_url_needs_cloud_disk(monkeypatch, local_root):
    monkeypatch.delenv("STORAGEFS_S3_HOST", raising=False)
    with pytest.raises(CapabilityMismatchError):
        run(monkeypatch, "--disk", "local", "url", "a.txt")


def test_config(monkeypatch, capsys, local_root):
    run(monkeypatch, "config")
    out = capsys.readouterr().out
    assert f"storagefs_local_root={local_root}" in out
    assert "#storagefs_s3_host=" in out
