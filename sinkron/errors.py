"""Jenis error untuk perintah sinkronisasi."""


class SinkronError(RuntimeError):
    """Induk semua error dari inti sinkronisasi."""


class DatasetError(SinkronError):
    """Dataset tidak bisa dibaca sama sekali; run dihentikan."""


class LookupFailure(SinkronError):
    """Pegawai, baris jabatan, atau record berkas yang diharapkan tidak ada."""


class DuplicateKeyError(SinkronError):
    # Lebih dari satu baris untuk kunci (pegawai, TMT)
    pass


class FetchError(SinkronError):
    """JSON atau dokumen gagal diambil dari BKN."""
