import logging
import os

from flask import Flask
from flask_migrate import Migrate

from config import Config
from models import db
# Model harus diimpor agar terdaftar di metadata (dipakai Flask-Migrate)
from models.pegawai import Pegawai  # noqa: F401
from models.jabatan import RiwayatJabatan  # noqa: F401
from models.dokumen import Dokumen  # noqa: F401
from sinkron.commands import register_commands

LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

migrate = Migrate()


def configure_logging(app):
    """Log ke konsol, all.log, dan errors.log (khusus ERROR)."""
    logger = logging.getLogger('sinkron')
    # create_app bisa dipanggil berkali-kali (tes); jangan menumpuk handler
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    handlers = [logging.StreamHandler()]

    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(os.path.join(log_dir, 'all.log'), encoding='utf-8'))
        error_handler = logging.FileHandler(os.path.join(log_dir, 'errors.log'), encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    return logger


def create_app(config_class=Config):
    # --- Inisialisasi Aplikasi ---
    app = Flask(__name__)
    app.config.from_object(config_class)

    # --- Inisialisasi Ekstensi ---
    db.init_app(app)
    migrate.init_app(app, db)

    configure_logging(app)

    # Membuat folder staging jika belum ada
    os.makedirs(app.config['STAGING_DATA_DIR'], exist_ok=True)
    os.makedirs(app.config['STAGING_FILES_DIR'], exist_ok=True)

    # --- Perintah CLI ---
    register_commands(app)
    return app
