import json
import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from app import create_app
from config import Config
from models import db as _db
from models.dokumen import Dokumen
from models.jabatan import RiwayatJabatan
from models.pegawai import Pegawai


@pytest.fixture
def app(tmp_path):
    class TestConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = "sqlite://"
        API_BASE_URL = "https://bkn.test/api"
        TOKEN_URL = "https://bkn.test/oauth/token"
        CLIENT_ID = "client"
        CLIENT_SECRET = "secret"
        STATIC_AUTH_TOKEN = "static"
        STAGING_DATA_DIR = str(tmp_path / "staging_data")
        STAGING_FILES_DIR = str(tmp_path / "temp_downloads")
        FILE_DESTINATION_BASE = str(tmp_path / "uploads" / "pegawai")
        LOG_DIR = None
        CONCURRENCY_LIMIT = 2

    app = create_app(TestConfig)
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def session(app):
    return _db.session


class Factory:
    """Pembuat data uji untuk tabel ms_employee, trx_jabatan, trx_employee_file."""

    def __init__(self, session, root):
        self.session = session
        self.root = root

    def pegawai(self, nip, status=1):
        pegawai = Pegawai(nip=nip, nama=f"Pegawai {nip}", status=status)
        self.session.add(pegawai)
        self.session.flush()
        return pegawai

    def dokumen(self, pegawai, name=None, status=1, jenis=11, content=b"%PDF-1.4 test"):
        path = None
        if name is not None:
            path = self.root / "uploads" / name
            if content is not None:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(content)
            path = str(path)
        dokumen = Dokumen(pegawai_id=pegawai.id, nama=name, jenis=jenis, file_path=path,
                          ukuran=len(content or b""), ekstensi="pdf", status=status)
        self.session.add(dokumen)
        self.session.flush()
        return dokumen

    def jabatan(self, pegawai, tmt, bkn_id=None, file_id=None, file_spp=None, file_ba=None,
                create_date=None, update_date=None):
        row = RiwayatJabatan(
            pegawai_id=pegawai.id,
            tmt=tmt,
            bkn_id=bkn_id,
            file_id=file_id,
            file_spp=file_spp,
            file_ba=file_ba,
            create_date=create_date or datetime(2020, 1, 1),
            update_date=update_date,
        )
        self.session.add(row)
        self.session.flush()
        return row


@pytest.fixture
def factory(session, tmp_path):
    return Factory(session, tmp_path)


def write_dataset(path, records, wrap=True):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"data": records} if wrap else records
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


@pytest.fixture
def dataset_file(tmp_path):
    def _write(records, name="dataset.json", wrap=True):
        return write_dataset(tmp_path / name, records, wrap=wrap)
    return _write


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b""):
        self.status_code = status_code
        self._json = json_data
        self._content = content
        self.closed = False

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self._content), 4):
            yield self._content[start:start + 4]

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"status {self.status_code}")

    def close(self):
        self.closed = True


class FakeSession:
    """Pengganti requests.Session: token dari ``tokens``, GET dari antrian ``responses``."""

    def __init__(self, tokens=("token-1",), responses=()):
        self.tokens = list(tokens)
        self.responses = list(responses)
        self.posts = []
        self.gets = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        if not self.tokens:
            return FakeResponse(500)
        return FakeResponse(200, {"access_token": self.tokens.pop(0)})

    def get(self, url, **kwargs):
        self.gets.append((url, kwargs))
        if not self.responses:
            return FakeResponse(404)
        return self.responses.pop(0)


@pytest.fixture
def fake_http():
    return FakeSession


@pytest.fixture
def make_client():
    from sinkron.bkn_client import BknClient

    def _make(session):
        return BknClient(
            base_url="https://bkn.test/api",
            token_url="https://bkn.test/oauth/token",
            client_id="client",
            client_secret="secret",
            static_token="static",
            timeout=5,
            session=session,
        )
    return _make
