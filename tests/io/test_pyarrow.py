# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
# pylint: disable=protected-access,unused-argument,redefined-outer-name
import os
import tempfile
from unittest.mock import MagicMock, patch

import pytest

from pydeltashare.io import (
    GCS_ENDPOINT,
    GCS_TOKEN,
    S3_ACCESS_KEY_ID,
    S3_ENDPOINT,
    S3_REGION,
    InputStream,
)
from pydeltashare.io.pyarrow import PyArrowFile, PyArrowFileIO


def test_pyarrow_input_file() -> None:
    """Test reading a file using PyArrowFile"""

    with tempfile.TemporaryDirectory() as tmpdirname:
        file_location = os.path.join(tmpdirname, "00000000000000000000.json")
        with open(file_location, "wb") as f:
            f.write(b'{"protocol":{"minReaderVersion":1}}\n')

        absolute_file_location = os.path.abspath(file_location)
        input_file = PyArrowFileIO().new_input(location=f"{absolute_file_location}")

        r = input_file.open(seekable=False)
        assert isinstance(r, InputStream)  # Test that the file object abides by the InputStream protocol
        data = r.read()
        assert data == b'{"protocol":{"minReaderVersion":1}}\n'
        assert len(input_file) == 36
        with pytest.raises(OSError) as exc_info:
            r.seek(0, 0)
        assert "only valid on seekable files" in str(exc_info.value)


def test_pyarrow_input_file_seekable() -> None:
    """Test reading a file twice using a seekable PyArrowFile"""

    with tempfile.TemporaryDirectory() as tmpdirname:
        file_location = os.path.join(tmpdirname, "foo.txt")
        with open(file_location, "wb") as f:
            f.write(b"foo")

        input_file = PyArrowFileIO().new_input(location=os.path.abspath(file_location))

        with input_file.open(seekable=True) as r:
            assert r.read() == b"foo"
            r.seek(0, 0)
            assert r.read() == b"foo"


def test_pyarrow_file_uri() -> None:
    with tempfile.TemporaryDirectory() as tmpdirname:
        file_location = os.path.join(tmpdirname, "foo.txt")
        with open(file_location, "wb") as f:
            f.write(b"foo")

        input_file = PyArrowFileIO().new_input(location=f"file://{file_location}")
        assert input_file.exists()
        assert len(input_file) == 3


def test_pyarrow_file_exists() -> None:
    with tempfile.TemporaryDirectory() as tmpdirname:
        file_location = os.path.join(tmpdirname, "foo.txt")
        with open(file_location, "wb") as f:
            f.write(b"foo")

        file_io = PyArrowFileIO()
        assert file_io.new_input(file_location).exists()
        assert not file_io.new_input(os.path.join(tmpdirname, "bar.txt")).exists()


def test_pyarrow_invalid_scheme() -> None:
    """Test that a ValueError is raised if a location is provided with an invalid scheme"""

    with pytest.raises(ValueError) as exc_info:
        PyArrowFileIO().new_input("foo://bar/baz.txt")

    assert "Unrecognized filesystem type in URI" in str(exc_info.value)


def test_pyarrow_violating_input_stream_protocol() -> None:
    """Test that an input file that violates the InputStream protocol is not accepted as one"""

    # Missing seek, tell, closed, and close
    input_file_mock = MagicMock(spec=["read"])

    filesystem_mock = MagicMock()
    filesystem_mock.open_input_file.return_value = input_file_mock

    input_file = PyArrowFile("foo.txt", path="foo.txt", fs=filesystem_mock)

    f = input_file.open()
    assert not isinstance(f, InputStream)


def test_raise_on_opening_a_local_file_not_found() -> None:
    """Test that a PyArrowFile raises appropriately when a local file is not found"""

    with tempfile.TemporaryDirectory() as tmpdirname:
        file_location = os.path.join(tmpdirname, "foo.txt")
        f = PyArrowFileIO().new_input(file_location)

        with pytest.raises(FileNotFoundError):
            f.open()


def test_raise_on_opening_an_s3_file_no_permission() -> None:
    """Test that opening a PyArrowFile raises a PermissionError when the pyarrow error includes 'AWS Error [code 15]'"""

    s3fs_mock = MagicMock()
    s3fs_mock.open_input_file.side_effect = OSError("AWS Error [code 15]")

    f = PyArrowFile("s3://foo/bar.txt", path="foo/bar.txt", fs=s3fs_mock)

    with pytest.raises(PermissionError) as exc_info:
        f.open()

    assert "Cannot open file, access denied:" in str(exc_info.value)


def test_raise_on_opening_an_s3_file_not_found() -> None:
    """Test that a PyArrowFile raises a FileNotFoundError when the pyarrow error includes 'Path does not exist'"""

    s3fs_mock = MagicMock()
    s3fs_mock.open_input_file.side_effect = OSError("Path does not exist")

    f = PyArrowFile("s3://foo/bar.txt", path="foo/bar.txt", fs=s3fs_mock)

    with pytest.raises(FileNotFoundError) as exc_info:
        f.open()

    assert "Cannot open file, does not exist:" in str(exc_info.value)


def test_list_dir() -> None:
    with tempfile.TemporaryDirectory() as tmpdirname:
        for name in ("00000000000000000001.json", "00000000000000000000.json"):
            with open(os.path.join(tmpdirname, name), "wb") as f:
                f.write(b"{}")
        os.mkdir(os.path.join(tmpdirname, "nested"))

        assert PyArrowFileIO().list_dir(tmpdirname) == ["00000000000000000000.json", "00000000000000000001.json"]


def test_list_dir_not_found() -> None:
    with tempfile.TemporaryDirectory() as tmpdirname:
        assert PyArrowFileIO().list_dir(os.path.join(tmpdirname, "_delta_log")) == []


def test_list_dir_no_permission() -> None:
    s3fs_mock = MagicMock()
    s3fs_mock.get_file_info.side_effect = OSError("AWS Error [code 15]")

    file_io = PyArrowFileIO()
    file_io.fs_by_scheme = MagicMock(return_value=s3fs_mock)

    with pytest.raises(PermissionError) as exc_info:
        file_io.list_dir("s3://bucket/table/_delta_log")

    assert "Cannot list directory, access denied:" in str(exc_info.value)


@pytest.mark.parametrize(
    "location, expected",
    [
        ("s3://bucket/table/_delta_log", ("s3", "bucket", "bucket/table/_delta_log")),
        ("gs://bucket/table", ("gs", "bucket", "bucket/table")),
        ("file:///tmp/table", ("file", "", "/tmp/table")),
        ("hdfs://namenode:8020/table", ("hdfs", "namenode:8020", "hdfs://namenode:8020/table")),
    ],
)
def test_parse_location(location: str, expected: tuple) -> None:
    assert PyArrowFileIO.parse_location(location) == expected


def test_parse_relative_location() -> None:
    scheme, _, path = PyArrowFileIO.parse_location("relative/table")
    assert scheme == "file"
    assert path == os.path.abspath("relative/table")


def test_s3_filesystem_from_properties() -> None:
    properties = {S3_ENDPOINT: "http://localhost:9000", S3_ACCESS_KEY_ID: "admin", S3_REGION: "eu-west-1"}
    with patch("pyarrow.fs.S3FileSystem") as s3fs:
        fs = PyArrowFileIO(properties).fs_by_scheme("s3", "bucket")

    assert fs is s3fs.return_value
    s3fs.assert_called_once_with(
        endpoint_override="http://localhost:9000",
        access_key="admin",
        secret_key=None,
        session_token=None,
        region="eu-west-1",
    )


def test_hdfs_filesystem_from_netloc() -> None:
    with patch("pyarrow.fs.HadoopFileSystem") as hdfs:
        file_io = PyArrowFileIO()
        input_file = file_io.new_input("hdfs://namenode:8020/table/_delta_log/00000000000000000000.json")

    hdfs.from_uri.assert_called_once_with("hdfs://namenode:8020")
    assert input_file._filesystem is hdfs.from_uri.return_value
    assert input_file._path == "hdfs://namenode:8020/table/_delta_log/00000000000000000000.json"


def test_gcs_filesystem_from_properties() -> None:
    properties = {GCS_TOKEN: "ya29.token", GCS_ENDPOINT: "http://localhost:4443"}
    with patch("pyarrow.fs.GcsFileSystem") as gcsfs:
        PyArrowFileIO(properties).fs_by_scheme("gs", "bucket")

    gcsfs.assert_called_once_with(access_token="ya29.token", scheme="http", endpoint_override="localhost:4443")


def test_gcs_filesystem_defaults() -> None:
    with patch("pyarrow.fs.GcsFileSystem") as gcsfs:
        PyArrowFileIO().fs_by_scheme("gcs", "bucket")

    gcsfs.assert_called_once_with()


def test_filesystems_are_cached_per_scheme_and_netloc() -> None:
    with patch("pyarrow.fs.GcsFileSystem") as gcsfs:
        file_io = PyArrowFileIO()
        file_io.new_input("gs://bucket/table/part-0.parquet")
        file_io.new_input("gs://bucket/table/part-1.parquet")
        file_io.new_input("gs://other/table/part-0.parquet")

    assert gcsfs.call_count == 2
