"""Shared fixtures for the archiver tests"""
import os
import threading

import pytest

from archiver.config import DirectoryConfig
from archiver.upload import UploadResult


class FakeUploader:
    """In-memory upload collaborator that records what it was given"""

    def __init__(self, ok=True, reachable=True):
        self.ok = ok
        self.reachable = reachable
        self.calls = []
        self.uploaded = {}
        self.probes = []
        self._lock = threading.Lock()

    def upload(self, local_path, destination):
        name = os.path.basename(local_path)
        with open(local_path, "rb") as f:
            data = f.read()
        with self._lock:
            self.calls.append((name, destination))
            self.uploaded[name] = data
        if self.ok:
            return UploadResult(ok=True, returncode=0)
        return UploadResult(ok=False, returncode=3, detail="directory not found")

    def probe(self, destination):
        self.probes.append(destination)
        return self.reachable


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def watch_dir(tmp_path):
    path = tmp_path / "incoming"
    path.mkdir()
    return str(path)


@pytest.fixture
def work_dir(tmp_path):
    return str(tmp_path / "work")


@pytest.fixture
def make_dir_config(watch_dir):
    def factory(compression="tar.gz", template="{filename}.{ext}", path=None, schedule="0 0 1 1 *"):
        return DirectoryConfig(
            path=path or watch_dir,
            schedule=schedule,
            naming_template=template,
            compression=compression,
            destination="remote:archive",
        )
    return factory


def write_file(path, content=b"0123456789"):
    with open(path, "wb") as f:
        f.write(content)
    return str(path)
