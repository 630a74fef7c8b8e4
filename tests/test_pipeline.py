"""Tests for archiver.pipeline module"""
import io
import os
import tarfile
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from archiver.errors import CompressionError, ConfigurationError, SourceFileError, UploadError
from archiver.pipeline import ArchivePipeline, ArchiveTask
from conftest import FakeUploader, write_file


def workdir_is_clean(work_dir):
    return not os.path.exists(work_dir) or os.listdir(work_dir) == []


class TestArchivePipeline:
    """Test suite for ArchivePipeline.archive"""

    @pytest.fixture
    def source(self, watch_dir):
        return write_file(os.path.join(watch_dir, "report.txt"))

    def test_tar_gz_upload_removes_original(self, uploader, source, work_dir, make_dir_config):
        """Test that a tar.gz archive is uploaded and the original removed"""
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)

        result = pipeline.archive(ArchiveTask(source, make_dir_config("tar.gz")))

        assert len(uploader.calls) == 1
        name, destination = uploader.calls[0]
        assert name == "report.txt.tar.gz"
        assert destination == "remote:archive"
        assert result.artifact_name == "report.txt.tar.gz"
        assert result.size == 10
        assert not os.path.exists(source)
        assert workdir_is_clean(work_dir)

    def test_tar_gz_holds_single_entry(self, uploader, source, work_dir, make_dir_config):
        """Test that the tarball contains exactly the renamed file"""
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)
        pipeline.archive(ArchiveTask(source, make_dir_config("tar.gz")))

        data = uploader.uploaded["report.txt.tar.gz"]
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            members = tar.getmembers()
            assert [m.name for m in members] == ["report.txt"]
            assert tar.extractfile(members[0]).read() == b"0123456789"

    def test_upload_failure_keeps_original(self, source, work_dir, make_dir_config):
        """Test that a failed upload leaves the source in place and cleans temp state"""
        uploader = FakeUploader(ok=False)
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)

        with pytest.raises(UploadError) as excinfo:
            pipeline.archive(ArchiveTask(source, make_dir_config("tar.gz")))

        assert excinfo.value.destination == "remote:archive"
        assert excinfo.value.returncode == 3
        assert "directory not found" in str(excinfo.value)
        assert os.path.exists(source)
        assert workdir_is_clean(work_dir)

    def test_no_compression_uploads_renamed_file(self, uploader, source, work_dir, make_dir_config):
        """Test that compression 'none' uploads the renamed file as-is"""
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)
        config = make_dir_config("none", template="{date}-{filename}.{ext}")
        task = ArchiveTask(source, config, detected_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))

        result = pipeline.archive(task)

        assert result.artifact_name == "2024-01-02-report.txt"
        assert uploader.uploaded["2024-01-02-report.txt"] == b"0123456789"
        assert not os.path.exists(source)
        assert workdir_is_clean(work_dir)

    def test_unsupported_compression_is_configuration_error(self, uploader, source, work_dir, make_dir_config):
        """Test that an unknown compression kind aborts before touching the source"""
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)

        with pytest.raises(ConfigurationError):
            pipeline.archive(ArchiveTask(source, make_dir_config("zip")))

        assert uploader.calls == []
        with open(source, "rb") as f:
            assert f.read() == b"0123456789"
        assert workdir_is_clean(work_dir)

    def test_missing_source(self, uploader, watch_dir, work_dir, make_dir_config):
        """Test that a missing source aborts without uploading"""
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)

        with pytest.raises(SourceFileError):
            pipeline.archive(ArchiveTask(os.path.join(watch_dir, "gone.txt"), make_dir_config()))

        assert uploader.calls == []
        assert workdir_is_clean(work_dir)

    def test_directory_source(self, uploader, watch_dir, work_dir, make_dir_config):
        """Test that a directory is rejected as a source"""
        subdir = os.path.join(watch_dir, "subdir")
        os.mkdir(subdir)
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)

        with pytest.raises(SourceFileError):
            pipeline.archive(ArchiveTask(subdir, make_dir_config()))

        assert os.path.isdir(subdir)

    def test_uploader_exception_cleans_temp(self, source, work_dir, make_dir_config):
        """Test that an exception from the uploader still removes the working directory"""

        class ExplodingUploader(FakeUploader):
            def upload(self, local_path, destination):
                raise RuntimeError("boom")

        pipeline = ArchivePipeline(ExplodingUploader(), temp_root=work_dir)

        with pytest.raises(RuntimeError):
            pipeline.archive(ArchiveTask(source, make_dir_config()))

        assert os.path.exists(source)
        assert workdir_is_clean(work_dir)

    def test_name_uses_detection_time(self, uploader, source, work_dir, make_dir_config):
        """Test that the rendered archive name comes from the task's detection time"""
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)
        config = make_dir_config("tar.gz", template="{humanTime}-{filename}.{ext}")
        task = ArchiveTask(source, config, detected_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))

        result = pipeline.archive(task)

        assert result.artifact_name == "2024-01-02_03-04-05-report.txt.tar.gz"

    def test_compression_failure_keeps_source(self, uploader, source, work_dir, make_dir_config):
        """Test that a tarball failure aborts before upload and leaves the source alone"""
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)

        with patch("archiver.pipeline.tarfile.open", side_effect=tarfile.TarError("disk full")):
            with pytest.raises(CompressionError):
                pipeline.archive(ArchiveTask(source, make_dir_config("tar.gz")))

        assert uploader.calls == []
        with open(source, "rb") as f:
            assert f.read() == b"0123456789"
        assert workdir_is_clean(work_dir)

    @pytest.mark.parametrize("template", ["{filename}/{ext}", "../{filename}", "/tmp/{filename}", ".."])
    def test_name_outside_workdir_rejected(self, uploader, source, work_dir, make_dir_config, template):
        """Test that templates rendering to a path rather than a file name are rejected"""
        pipeline = ArchivePipeline(uploader, temp_root=work_dir)

        with pytest.raises(ConfigurationError):
            pipeline.archive(ArchiveTask(source, make_dir_config("none", template=template)))

        assert uploader.calls == []
        assert os.path.exists(source)
        assert workdir_is_clean(work_dir)
