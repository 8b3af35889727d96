import os
from dotenv import load_dotenv

# Menentukan direktori dasar proyek
basedir = os.path.abspath(os.path.dirname(__file__))
# Memuat environment variables dari file .env
load_dotenv(os.path.join(basedir, '.env'))


class Config:
    # Mengambil URL database dari environment variable
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
                              'sqlite:///' + os.path.join(basedir, 'sinkron_fallback.db')

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Kredensial API BKN (client credentials + token statis)
    API_BASE_URL = os.environ.get('API_BASE_URL')
    TOKEN_URL = os.environ.get('TOKEN_URL')
    CLIENT_ID = os.environ.get('CLIENT_ID')
    CLIENT_SECRET = os.environ.get('CLIENT_SECRET')
    STATIC_AUTH_TOKEN = os.environ.get('STATIC_AUTH_TOKEN')
    DOWNLOAD_PATH = os.environ.get('DOWNLOAD_PATH') or '/download-dok'

    # Batas waktu dan jumlah percobaan ulang untuk setiap request
    REQUEST_TIMEOUT = int(os.environ.get('REQUEST_TIMEOUT') or 60)
    REQUEST_RETRIES = int(os.environ.get('REQUEST_RETRIES') or 3)
    CONCURRENCY_LIMIT = int(os.environ.get('CONCURRENCY_LIMIT') or 8)

    # Folder staging
    STAGING_DATA_DIR = os.environ.get('STAGING_DATA_DIR') or os.path.join(basedir, 'staging_data')
    STAGING_FILES_DIR = os.environ.get('STAGING_FILES_DIR') or os.path.join(basedir, 'temp_downloads')
    DEFAULT_DATASET_FILENAME = '1-final.json'

    # Folder tujuan akhir berkas PDF
    FILE_DESTINATION_BASE = os.environ.get('FILE_DESTINATION_BASE') or os.path.join(basedir, 'uploads/pegawai')

    # User yang tercatat sebagai pengubah data hasil sinkronisasi
    SUPERADMIN_ID = int(os.environ.get('SUPERADMIN_ID') or 1)

    # Logging: None berarti hanya ke konsol
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(basedir, 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
