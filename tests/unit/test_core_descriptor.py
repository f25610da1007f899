"""Unit tests for transfer descriptors and their key/value file format."""

import base64
import os
import stat

import pytest

from dicomrelay.core import descriptor as desc
from dicomrelay.core.descriptor import (
    TransferDescriptor,
    anonymous_data_filename,
    build_descriptors,
    descriptor_filename,
    dumps,
    load_descriptor,
    loads,
    parse_properties,
    recipient_index_from_path,
    save_descriptor,
)
from dicomrelay.core.exceptions import (
    ConfigError,
    FormatError,
    IncompleteDescriptorError,
    ParseError,
)
from dicomrelay.core.hashing import calculate_sha512_bytes
from dicomrelay.core.models import RemoteEndpoint, UploadResult

DIGEST = calculate_sha512_bytes(b"ciphertext")


@pytest.fixture
def descriptor(endpoint):
    return TransferDescriptor(
        wrapped_key=b"\x01" * 256,
        digest=DIGEST,
        data_filename="scan.dcm",
        remote_filename="17",
        endpoint=endpoint,
    )


def _props(**overrides):
    props = {
        "xskey": base64.b64encode(b"\x02" * 256).decode(),
        "digest": base64.b64encode(DIGEST).decode(),
        "filename": "scan.dcm",
        "ftpfilename": "3",
        "ftpserver": "ftp.example.org",
        "ftpport": "21",
        "ftpuser": "uploader",
        "ftppwd": "s3cret",
    }
    props.update(overrides)
    return "\n".join(f"{k}={v}" for k, v in props.items() if v is not None) + "\n"


# ==============================================================================
# Text format
# ==============================================================================

def test_dumps_loads_roundtrip(descriptor):
    text = dumps(descriptor)
    assert text.startswith("#" + desc.COMMENT + "\n#")
    assert "ftpfilename=17\n" in text
    assert "ftpport=2121\n" in text

    loaded = loads(text)
    assert loaded == descriptor


def test_special_characters_survive(endpoint):
    tricky = RemoteEndpoint(endpoint.host, endpoint.port, "up:loader", " p=ss:w#rd\\!\tü")
    d = TransferDescriptor(b"\x01" * 256, DIGEST, "a=b.dcm", "4", tricky)
    loaded = loads(dumps(d))
    assert loaded.endpoint.password == " p=ss:w#rd\\!\tü"
    assert loaded.endpoint.user == "up:loader"
    assert loaded.data_filename == "a=b.dcm"


def test_java_properties_escapes():
    props = parse_properties([
        "#comment",
        "! another comment",
        "",
        "ftppwd=a\\=b\\:c",
        "ftpuser : bob",
        "filename=\\u00e9t\\u00E9.dcm",
        "  ftpserver=host  ",
    ])
    assert props == {
        "ftppwd": "a=b:c",
        "ftpuser": "bob",
        "filename": "été.dcm",
        "ftpserver": "host  ",
    }


@pytest.mark.parametrize("line", ["no separator here", "ftppwd=abc\\", "filename=\\u00zz"])
def test_malformed_properties(line):
    with pytest.raises(ParseError):
        parse_properties([line])


def test_loads_minimal_file():
    d = loads(_props())
    assert d.remote_filename == "3"
    assert d.endpoint == RemoteEndpoint("ftp.example.org", 21, "uploader", "s3cret")
    assert d.wrapped_key == b"\x02" * 256
    assert d.recipient_index is None


def test_missing_key_is_incomplete():
    with pytest.raises(IncompleteDescriptorError, match="ftppwd"):
        loads(_props(ftppwd=None))


@pytest.mark.parametrize(
    "port",
    ["abc", "", "0", "-21", "+21", "2_1", "65536", "99999999999999999999", "\u0662\u0661", "21x"],
)
def test_bad_port(port):
    with pytest.raises(FormatError):
        loads(_props(ftpport=port))


def test_bad_base64():
    with pytest.raises(FormatError, match="xskey"):
        loads(_props(xskey="not base64!!"))


def test_digest_must_be_sha512_sized():
    with pytest.raises(FormatError):
        loads(_props(digest=base64.b64encode(b"short").decode()))


def test_empty_values_are_incomplete():
    with pytest.raises(IncompleteDescriptorError):
        loads(_props(filename=""))


def test_empty_host_is_rejected():
    with pytest.raises(ConfigError, match="host"):
        loads(_props(ftpserver=""))


# ==============================================================================
# Fan-out and filenames
# ==============================================================================

def test_build_descriptors_one_per_recipient(endpoint):
    upload = UploadResult("5", "scan.dcm", endpoint)
    wrapped = [b"\x0a" * 256, b"\x0b" * 256, b"\x0c" * 256]

    descriptors = build_descriptors(upload, DIGEST, wrapped)

    assert [d.recipient_index for d in descriptors] == [0, 1, 2]
    assert [d.wrapped_key for d in descriptors] == wrapped
    assert {d.remote_filename for d in descriptors} == {"5"}
    assert {d.digest for d in descriptors} == {DIGEST}


def test_anonymous_data_filename():
    assert anonymous_data_filename("12") == "12_dataXchanger_dicomfile"


@pytest.mark.parametrize(
    "name, index, expected",
    [
        ("scan.dcm", 0, "scan_0.rconf"),
        ("/data/in/scan.dcm", 2, "scan_2.rconf"),
        ("series.1.dcm", 1, "series.1_1.rconf"),
        ("IM0001", 0, "IM0001_0.rconf"),
        (".hidden", 3, ".hidden_3.rconf"),
    ],
)
def test_descriptor_filename(name, index, expected):
    assert descriptor_filename(name, index) == expected


@pytest.mark.parametrize(
    "path, expected",
    [("scan_0.rconf", 0), ("/x/scan_12.rconf", 12), ("scan.rconf", None), ("scan_1.txt", None)],
)
def test_recipient_index_from_path(path, expected):
    assert recipient_index_from_path(path) == expected


def test_save_and_load(tmp_path, descriptor):
    path = save_descriptor(descriptor, tmp_path / "scan_1.rconf")

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    loaded = load_descriptor(path)
    assert loaded.recipient_index == 1
    assert loaded.wrapped_key == descriptor.wrapped_key
    assert loaded.endpoint.password == descriptor.endpoint.password


def test_repr_hides_secrets(descriptor):
    text = repr(descriptor)
    assert "s3cret" not in text
    assert "wrapped_key" not in text


def test_port_bounds_and_whitespace():
    assert loads(_props(ftpport=" 65535 ")).endpoint.port == 65535
    assert loads(_props(ftpport="1")).endpoint.port == 1


def test_save_never_replaces_existing_file(tmp_path, descriptor):
    path = tmp_path / "scan_0.rconf"
    path.write_text("keep me", encoding="utf-8")

    with pytest.raises(FileExistsError):
        save_descriptor(descriptor, path)
    assert path.read_text(encoding="utf-8") == "keep me"


def test_save_creates_owner_only_file_under_open_umask(tmp_path, descriptor):
    old = os.umask(0)
    try:
        path = save_descriptor(descriptor, tmp_path / "scan_0.rconf")
    finally:
        os.umask(old)
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_load_non_utf8_descriptor(tmp_path):
    path = tmp_path / "scan_0.rconf"
    path.write_bytes(b"ftppwd=\xff\xfe\n")
    with pytest.raises(ParseError, match="UTF-8"):
        load_descriptor(path)


def test_alternative_descriptor_filenames():
    assert descriptor_filename("scan.dcm", 0, attempt=1) == "scan-1_0.rconf"
    assert recipient_index_from_path(descriptor_filename("scan.dcm", 3, attempt=2)) == 3
