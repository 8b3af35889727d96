"""Klien REST BKN: token client-credentials, riwayat jabatan, unduh dokumen."""
from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import FetchError, SinkronError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
RETRY_STATUSES = (502, 503, 504)


def build_session(retries: int) -> requests.Session:
    """Session dengan retry terbatas untuk error koneksi dan 502/503/504."""
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=0.5,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset({"GET", "POST"}),
        raise_on_status=False,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": "sinkron-jabatan-bkn/1.0"})
    return session


class TokenStore:
    """Token dinamis yang dibagi antar worker thread."""

    def __init__(self, fetch_token: Callable[[], str]) -> None:
        self._fetch_token = fetch_token
        self._token: Optional[str] = None
        self._lock = threading.Lock()

    def get(self) -> str:
        with self._lock:
            if self._token is None:
                self._token = self._fetch_token()
            return self._token

    def refresh(self, stale: Optional[str]) -> str:
        # Worker lain mungkin sudah memperbarui token; jangan minta dua kali.
        with self._lock:
            if self._token is None or self._token == stale:
                self._token = self._fetch_token()
            return self._token


class BknClient:
    def __init__(
        self,
        *,
        base_url: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        static_token: str,
        download_path: str = "/download-dok",
        timeout: float = 60,
        retries: int = 3,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.static_token = static_token
        self.download_path = download_path
        self.timeout = timeout
        self.session = session if session is not None else build_session(retries)
        self.tokens = TokenStore(self._request_token)

    @classmethod
    def from_config(cls, config, session: Optional[requests.Session] = None) -> "BknClient":
        required = ("API_BASE_URL", "TOKEN_URL", "CLIENT_ID", "CLIENT_SECRET", "STATIC_AUTH_TOKEN")
        missing = [name for name in required if not config.get(name)]
        if missing:
            raise SinkronError(f"Kredensial API belum lengkap di environment: {', '.join(missing)}")
        return cls(
            base_url=config["API_BASE_URL"],
            token_url=config["TOKEN_URL"],
            client_id=config["CLIENT_ID"],
            client_secret=config["CLIENT_SECRET"],
            static_token=config["STATIC_AUTH_TOKEN"],
            download_path=config.get("DOWNLOAD_PATH", "/download-dok"),
            timeout=config.get("REQUEST_TIMEOUT", 60),
            retries=config.get("REQUEST_RETRIES", 3),
            session=session,
        )

    def _request_token(self) -> str:
        logger.info("[AUTH] Meminta token dinamis dari %s", self.token_url)
        try:
            response = self.session.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            token = response.json().get("access_token")
        except (requests.RequestException, ValueError) as exc:
            raise FetchError(f"Gagal mengambil token dinamis: {exc}") from exc
        if not token:
            raise FetchError("Respons token tidak berisi access_token")
        logger.info("[AUTH] Token dinamis diperoleh")
        return token

    def _headers(self, token: str, accept: str) -> dict[str, str]:
        return {
            "accept": accept,
            "Authorization": f"Bearer {token}",
            "Auth": f"Bearer {self.static_token}",
        }

    def _get(self, url: str, *, accept: str, context: str, params=None, stream: bool = False):
        token = self.tokens.get()
        try:
            response = self.session.get(url, headers=self._headers(token, accept), params=params,
                                        stream=stream, timeout=self.timeout)
            if response.status_code == 401:
                response.close()
                logger.warning("[AUTH] Token kedaluwarsa saat %s. Memperbarui token dan mencoba sekali lagi.",
                               context)
                token = self.tokens.refresh(token)
                response = self.session.get(url, headers=self._headers(token, accept), params=params,
                                            stream=stream, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FetchError(f"{context}: {exc}") from exc

        if not response.ok:
            status = response.status_code
            response.close()
            raise FetchError(f"{context}: status {status}")
        return response

    def fetch_riwayat_jabatan(self, nip: str) -> Any:
        response = self._get(f"{self.base_url}/jabatan/pns/{nip}", accept="application/json",
                             context=f"ambil JSON NIP {nip}")
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(f"ambil JSON NIP {nip}: respons bukan JSON") from exc

    def open_document(self, uri: str):
        return self._get(f"{self.base_url}{self.download_path}", params={"filePath": uri},
                         accept="application/pdf", stream=True, context=f"unduh {uri}")

    def download_to(self, uri: str, destination) -> int:
        """Unduh ke ``<destination>.tmp`` lalu rename atomik. Mengembalikan jumlah byte.

        Berkas tujuan tidak pernah ditimpa dengan hasil unduhan yang terpotong atau kosong.
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = destination.with_name(destination.name + ".tmp")
        try:
            response = self.open_document(uri)
            try:
                with open(temp_path, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            handle.write(chunk)
                    handle.flush()
                    os.fsync(handle.fileno())
            except requests.RequestException as exc:
                raise FetchError(f"unduh {uri}: {exc}") from exc
            finally:
                response.close()

            size = temp_path.stat().st_size
            if size == 0:
                raise FetchError(f"unduh {uri}: berkas yang diunduh kosong")
            os.replace(temp_path, destination)
            return size
        finally:
            if temp_path.exists():
                temp_path.unlink()
