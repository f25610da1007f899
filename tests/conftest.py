"""Shared fixtures: RSA keys, DICOM records, whitelists and a fake FTP server."""

from __future__ import annotations

import ftplib
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydicom.dataset import Dataset, FileMetaDataset
from pydicom.uid import ExplicitVRLittleEndian, SecondaryCaptureImageStorage, generate_uid

from dicomrelay.anonymizer.codec import PREAMBLE, encode
from dicomrelay.anonymizer.whitelist import parse_whitelist
from dicomrelay.core.models import RemoteEndpoint
from dicomrelay.network.client import FtpTransport

WHITELIST_TEXT = """\
# mandatory for writing files
(0002,0010)
(0002,0002)
(0002,0003)

(0008,0016)
(0008,0018)
(0008,0020)
(0008,0060)
(0010,0010)=ANON
"""


class FakeFTP:
    """A stand-in for ftplib.FTP backed by a shared dict of remote files."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None, fail_login: bool = False):
        self.files: Dict[str, bytes] = files if files is not None else {}
        self.fail_login = fail_login
        self.commands: List[str] = []
        self.pasv: Optional[bool] = None
        self.connected_to = None
        self.closed = False

    def connect(self, host, port, timeout=None):
        self.connected_to = (host, port, timeout)
        return "220 welcome"

    def login(self, user, passwd):
        if self.fail_login:
            raise ftplib.error_perm("530 Login incorrect.")
        self.commands.append(f"USER {user}")
        return "230 logged in"

    def set_pasv(self, val):
        self.pasv = val

    def voidcmd(self, cmd):
        self.commands.append(cmd)
        return "200 OK"

    def nlst(self, *args):
        if not self.files:
            raise ftplib.error_perm("550 No files found")
        return list(self.files)

    def storbinary(self, cmd, fp, blocksize=8192):
        self.commands.append(cmd)
        name = cmd.split(" ", 1)[1]
        data = bytearray()
        while True:
            chunk = fp.read(blocksize)
            if not chunk:
                break
            data += chunk
        self.files[name] = bytes(data)
        return "226 Transfer complete."

    def retrbinary(self, cmd, callback, blocksize=8192):
        self.commands.append(cmd)
        name = cmd.split(" ", 1)[1]
        if name not in self.files:
            raise ftplib.error_perm(f"550 {name}: No such file")
        data = self.files[name]
        for i in range(0, len(data), blocksize):
            callback(data[i:i + blocksize])
        return "226 Transfer complete."

    def quit(self):
        self.commands.append("QUIT")
        return "221 bye"

    def close(self):
        self.closed = True


@pytest.fixture
def fake_ftp_cls():
    return FakeFTP


@pytest.fixture
def remote_files() -> Dict[str, bytes]:
    """Contents of the fake transfer point, shared by every connection."""
    return {}


@pytest.fixture
def transport_factory(remote_files):
    """Orchestrator transport factory that talks to the fake server."""

    def factory(endpoint: RemoteEndpoint, active: bool = False) -> FtpTransport:
        return FtpTransport(
            endpoint.host,
            endpoint.port,
            endpoint.user,
            endpoint.password,
            active=active,
            ftp_factory=lambda: FakeFTP(remote_files),
        )

    return factory


@pytest.fixture
def endpoint() -> RemoteEndpoint:
    return RemoteEndpoint(host="ftp.example.org", port=2121, user="uploader", password="s3cret")


@pytest.fixture(scope="session")
def rsa_keys():
    """Three independent 2048 bit RSA private keys."""
    return [rsa.generate_private_key(public_exponent=65537, key_size=2048) for _ in range(3)]


def make_dataset(**overrides) -> Dataset:
    file_meta = FileMetaDataset()
    file_meta.MediaStorageSOPClassUID = SecondaryCaptureImageStorage
    file_meta.MediaStorageSOPInstanceUID = generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = Dataset()
    ds.file_meta = file_meta
    ds.preamble = PREAMBLE
    ds.SOPClassUID = file_meta.MediaStorageSOPClassUID
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.StudyDate = "20130101"
    ds.Modality = "MR"
    ds.PatientName = "DOE^JOHN"
    ds.PatientID = "12345"
    ds.PatientBirthDate = "19700101"
    for keyword, value in overrides.items():
        setattr(ds, keyword, value)
    return ds


@pytest.fixture
def make_dicom():
    return make_dataset


@pytest.fixture
def dataset() -> Dataset:
    return make_dataset()


@pytest.fixture
def dicom_file(tmp_path, dataset) -> Path:
    path = tmp_path / "scan.dcm"
    encode(dataset, path)
    return path


@pytest.fixture
def whitelist():
    return parse_whitelist(WHITELIST_TEXT.splitlines(), source="test")


@pytest.fixture
def whitelist_file(tmp_path) -> Path:
    path = tmp_path / "whitelist.txt"
    path.write_text(WHITELIST_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def key_files(tmp_path, rsa_keys):
    """PEM files for the first two keys: [(private_path, public_path), ...]."""
    paths = []
    for i, key in enumerate(rsa_keys[:2]):
        priv = tmp_path / f"recipient{i}.pem"
        pub = tmp_path / f"recipient{i}.pub"
        priv.write_bytes(key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ))
        pub.write_bytes(key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ))
        paths.append((priv, pub))
    return paths
