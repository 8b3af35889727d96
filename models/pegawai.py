from . import db

# employee_status = 0 berarti pegawai sudah tidak aktif
STATUS_PEGAWAI_NONAKTIF = 0


class Pegawai(db.Model):
    __tablename__ = 'ms_employee'

    id = db.Column('employee_id', db.Integer, primary_key=True)
    nip = db.Column('employee_nip', db.String(30), index=True, nullable=False)
    nama = db.Column('employee_name', db.String(150), nullable=True)
    status = db.Column('employee_status', db.Integer, default=1, nullable=False)

    riwayat_jabatan = db.relationship('RiwayatJabatan', backref='pegawai', lazy=True)
    dokumen = db.relationship('Dokumen', backref='pegawai', lazy=True)

    def __repr__(self):
        return f'<Pegawai {self.nip}>'

    @classmethod
    def find_active_by_nip(cls, session, nip):
        return session.query(cls).filter(
            cls.nip == nip,
            cls.status != STATUS_PEGAWAI_NONAKTIF
        ).first()
