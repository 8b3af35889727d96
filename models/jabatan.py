from datetime import datetime
from . import db

# trx_jabatan_status untuk baris hasil sinkronisasi BKN
STATUS_SYNC_BKN = 3

# Tiga kolom rujukan berkas, urutannya tetap
FILE_COLUMNS = ('file_id', 'file_spp', 'file_ba')


class RiwayatJabatan(db.Model):
    __tablename__ = 'trx_jabatan'
    # Tabel lama masih bisa berisi duplikat (pegawai, tmt); dedupe yang memulihkannya,
    # jadi batasan unik tidak dideklarasikan di sini.
    __table_args__ = (
        db.Index('ix_trx_jabatan_employee_tmt', 'trx_jabatan_employee_id', 'trx_jabatan_tmt'),
    )

    id = db.Column('trx_jabatan_id', db.Integer, primary_key=True)
    pegawai_id = db.Column('trx_jabatan_employee_id', db.Integer, db.ForeignKey('ms_employee.employee_id'),
                           nullable=False)
    tmt = db.Column('trx_jabatan_tmt', db.Date, nullable=False)
    bkn_id = db.Column('trx_jabatan_bkn_id', db.String(64), nullable=True)
    nama_jabatan = db.Column('trx_jabatan_jabatan_nama', db.String(255), nullable=True)
    organisasi = db.Column('trx_jabatan_jabatan_organization', db.String(255), nullable=True)
    nomor_sk = db.Column('trx_jabatan_nomor_sk', db.String(150), nullable=True)
    tgl_sk = db.Column('trx_jabatan_tgl_sk', db.Date, nullable=True)
    status = db.Column('trx_jabatan_status', db.Integer, nullable=True)

    # Rujukan ke trx_employee_file, satu kolom per kategori dokumen
    file_id = db.Column('trx_jabatan_file_id', db.Integer, db.ForeignKey('trx_employee_file.file_id'), nullable=True)
    file_spp = db.Column('trx_jabatan_file_spp', db.Integer, db.ForeignKey('trx_employee_file.file_id'),
                         nullable=True)
    file_ba = db.Column('trx_jabatan_file_ba', db.Integer, db.ForeignKey('trx_employee_file.file_id'), nullable=True)

    create_by = db.Column('trx_jabatan_create_by', db.Integer, nullable=True)
    create_date = db.Column('trx_jabatan_create_date', db.DateTime, default=datetime.utcnow)
    update_by = db.Column('trx_jabatan_update_by', db.Integer, nullable=True)
    update_date = db.Column('trx_jabatan_update_date', db.DateTime, nullable=True)

    def __repr__(self):
        return f'<RiwayatJabatan {self.id} - {self.tmt}>'

    def file_refs(self):
        """Pasangan (kolom, file_id) untuk kolom berkas yang terisi."""
        return [(column, getattr(self, column)) for column in FILE_COLUMNS if getattr(self, column)]

    @property
    def jumlah_berkas(self):
        return len(self.file_refs())
