from datetime import datetime
from . import db

FILE_STATUS_AKTIF = 1
FILE_STATUS_NONAKTIF = 0


class Dokumen(db.Model):
    """Satu berkas pegawai yang tersimpan di disk (tabel trx_employee_file).

    Berkas yang sama boleh dirujuk oleh lebih dari satu baris riwayat jabatan,
    jadi status hanya boleh dimatikan setelah tidak ada rujukan tersisa.
    """
    __tablename__ = 'trx_employee_file'

    id = db.Column('file_id', db.Integer, primary_key=True)
    pegawai_id = db.Column('file_employee_id', db.Integer, db.ForeignKey('ms_employee.employee_id'), nullable=False)
    nama = db.Column('file_name', db.String(255), nullable=True)
    jenis = db.Column('file_type', db.Integer, nullable=False)  # 11 = SK, 40 = SPP, 41 = BA
    file_path = db.Column('file_path', db.String(500), nullable=True)
    ukuran = db.Column('file_size', db.Integer, nullable=True)
    ekstensi = db.Column('file_ext', db.String(10), nullable=True)
    status = db.Column('file_status', db.Integer, default=FILE_STATUS_AKTIF, nullable=False)
    create_by = db.Column('file_create_by', db.Integer, nullable=True)
    create_date = db.Column('file_create_date', db.DateTime, default=datetime.utcnow)
    update_by = db.Column('file_update_by', db.Integer, nullable=True)
    update_date = db.Column('file_update_date', db.DateTime, nullable=True)

    def __repr__(self):
        return f'<Dokumen {self.id} - {self.file_path}>'

    @property
    def aktif(self):
        return self.status == FILE_STATUS_AKTIF
