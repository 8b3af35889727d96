"""Perintah CLI Flask untuk sinkronisasi jabatan BKN.

Jalankan dengan ``flask --app app <perintah>``. Semua perintah yang mengubah
data berjalan dalam mode dry-run kecuali diberi ``--commit``.
"""
import functools
import logging
import os
import sys
from contextlib import contextmanager

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy.exc import SQLAlchemyError

from models import db

from .bkn_client import BknClient
from .dataset import load_id_list, load_index, split_id_list
from .errors import DatasetError, SinkronError
from .fetcher import StagingFetcher, merge_staging, refetch_documents
from .importer import JabatanImporter
from .laporan import RunSummary, error_category
from .rekonsiliasi import CleanupEngine, ReconciliationEngine
from .siklus_berkas import FileLifecycleManager
from .validasi import LinkValidator, StagingValidator

logger = logging.getLogger(__name__)


def common_options(commit=True):
    """Opsi bersama: filter NIP, verbose, laporan Excel, dan (opsional) --commit/--dry-run."""
    def decorator(func):
        options = [
            click.option("--nip", "nips", multiple=True, help="Batasi ke NIP tertentu (boleh diulang, boleh dipisah koma)."),
            click.option("--nips-file", type=click.Path(dir_okay=False), help="Baca daftar NIP dari file."),
            click.option("--verbose", is_flag=True, help="Tampilkan log DEBUG."),
            click.option("--report", type=click.Path(dir_okay=False), help="Simpan ringkasan ke file Excel (.xlsx)."),
        ]
        if commit:
            options.append(click.option("--commit/--dry-run", "commit", default=False,
                                        help="Jalankan perubahan sungguhan (default: dry-run)."))
        for option in reversed(options):
            func = option(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if kwargs.get("verbose"):
                logging.getLogger("sinkron").setLevel(logging.DEBUG)
            return func(*args, **kwargs)
        return wrapper
    return decorator


def resolve_nip_filter(nips, nips_file):
    values = set()
    for chunk in nips or ():
        values.update(split_id_list(chunk))
    if nips_file:
        values.update(load_id_list(nips_file))
    return values or None


def resolve_dataset_path(dataset, required=True):
    if dataset:
        return os.path.abspath(dataset)
    default = os.path.join(current_app.config['STAGING_DATA_DIR'], current_app.config['DEFAULT_DATASET_FILENAME'])
    if os.path.exists(default):
        logger.info("[CONFIG] Memakai dataset default %s.", default)
        return default
    if required:
        raise DatasetError(f"Dataset wajib diisi: beri --dataset <path> atau letakkan "
                           f"{current_app.config['DEFAULT_DATASET_FILENAME']} di {current_app.config['STAGING_DATA_DIR']}.")
    logger.warning("[CONFIG] Dataset tidak diberikan dan default tidak ditemukan. Berjalan tanpa acuan dataset.")
    return None


def build_lifecycle(summary, delete_files=False):
    return FileLifecycleManager(db.session, summary, superadmin_id=current_app.config['SUPERADMIN_ID'],
                                delete_files=delete_files)


def finish(summary, report=None):
    """Ringkasan selalu ditulis; exit code 1 bila ada error yang belum selesai."""
    summary.log()
    if report:
        summary.write_excel(report)
    if summary.exit_code:
        sys.exit(summary.exit_code)


@contextmanager
def fatal_guard(summary, report=None):
    """Error fatal di luar grup: rollback, catat, tetap tulis ringkasan, exit 1."""
    try:
        yield
    except (SinkronError, SQLAlchemyError, OSError) as e:
        db.session.rollback()
        logger.error("[FATAL] %s gagal: %s", summary.title, e)
        summary.discard_group()
        summary.record_error(error_category(e), summary.title, str(e), log=False)
        finish(summary, report)
    except Exception as e:
        db.session.rollback()
        logger.exception("[FATAL] %s gagal karena error tak terduga", summary.title)
        summary.discard_group()
        summary.record_error(error_category(e), summary.title, f"{type(e).__name__}: {e}", log=False)
        finish(summary, report)


@click.command("dedupe-jabatan")
@click.option("--dataset", type=click.Path(dir_okay=False), help="Dataset gabungan (default: staging_data/1-final.json).")
@common_options()
@with_appcontext
def dedupe_jabatan(dataset, nips, nips_file, verbose, report, commit):
    """Hapus baris trx_jabatan duplikat per NIP/TMT dan nonaktifkan berkas yatim."""
    summary = RunSummary("dedupe-jabatan", dry_run=not commit)
    with fatal_guard(summary, report):
        nip_filter = resolve_nip_filter(nips, nips_file)
        dataset_path = resolve_dataset_path(dataset, required=False)
        index = load_index(dataset_path, nip_filter=nip_filter) if dataset_path else None
        engine = ReconciliationEngine(db.session, build_lifecycle(summary), summary)
        engine.run(index, nip_filter)
    finish(summary, report)


@click.command("cleanup-files")
@click.option("--dataset", type=click.Path(dir_okay=False), help="Dataset gabungan (default: staging_data/1-final.json).")
@click.option("--delete-files", is_flag=True, help="Hapus juga berkas fisik yang dinonaktifkan.")
@common_options()
@with_appcontext
def cleanup_files(dataset, delete_files, nips, nips_file, verbose, report, commit):
    """Lepas tautan berkas yang dokumennya sudah tidak ada di dataset."""
    summary = RunSummary("cleanup-files", dry_run=not commit)
    with fatal_guard(summary, report):
        nip_filter = resolve_nip_filter(nips, nips_file)
        index = load_index(resolve_dataset_path(dataset), nip_filter=nip_filter)
        engine = CleanupEngine(db.session, build_lifecycle(summary, delete_files=delete_files), summary)
        engine.run(index)
    finish(summary, report)


@click.command("restore-files")
@click.option("--dataset", type=click.Path(dir_okay=False), help="Dataset gabungan (default: staging_data/1-final.json).")
@common_options()
@with_appcontext
def restore_files(dataset, nips, nips_file, verbose, report, commit):
    """Unduh ulang berkas aktif yang tertaut tapi hilang dari disk."""
    summary = RunSummary("restore-files", dry_run=not commit)
    with fatal_guard(summary, report):
        nip_filter = resolve_nip_filter(nips, nips_file)
        index = load_index(resolve_dataset_path(dataset), nip_filter=nip_filter)
        # Dry-run tidak mengunduh apa pun, jadi kredensial API tidak diperlukan
        client = BknClient.from_config(current_app.config) if commit else None
        build_lifecycle(summary).restore_missing(client, index, nip_filter)
    finish(summary, report)


@click.command("fetch")
@click.option("--force-json", is_flag=True, help="Abaikan cache <nip>.json dan ambil ulang dari API.")
@click.option("--force-files", is_flag=True, help="Unduh ulang dokumen walau sudah ada di staging.")
@common_options(commit=False)
@with_appcontext
def fetch(force_json, force_files, nips, nips_file, verbose, report):
    """Ambil JSON riwayat jabatan dan dokumen BKN ke folder staging."""
    summary = RunSummary("fetch", dry_run=False)
    with fatal_guard(summary, report):
        nip_filter = resolve_nip_filter(nips, nips_file)
        if not nip_filter:
            raise SinkronError("Daftar NIP kosong: beri --nip atau --nips-file.")
        config = current_app.config
        fetcher = StagingFetcher(
            BknClient.from_config(config), summary,
            staging_data_dir=config['STAGING_DATA_DIR'],
            staging_files_dir=config['STAGING_FILES_DIR'],
            force_json=force_json,
            force_files=force_files,
            concurrency=config['CONCURRENCY_LIMIT'],
        )
        fetcher.run(sorted(nip_filter))
    finish(summary, report)


@click.command("build-dataset")
@click.option("--output", type=click.Path(dir_okay=False), help="File keluaran (default: staging_data/1-final.json).")
@click.option("--verbose", is_flag=True, help="Tampilkan log DEBUG.")
@with_appcontext
def build_dataset(output, verbose):
    """Gabungkan semua <nip>.json di staging menjadi satu dataset."""
    if verbose:
        logging.getLogger("sinkron").setLevel(logging.DEBUG)
    config = current_app.config
    summary = RunSummary("build-dataset", dry_run=False)
    output = output or os.path.join(config['STAGING_DATA_DIR'], config['DEFAULT_DATASET_FILENAME'])
    with fatal_guard(summary):
        merge_staging(config['STAGING_DATA_DIR'], output, summary)
    finish(summary)


@click.command("refetch-documents")
@click.option("--ids-file", required=True, type=click.Path(dir_okay=False), help="File berisi ID record BKN.")
@click.option("--dataset", type=click.Path(dir_okay=False), help="Dataset gabungan (default: staging_data/1-final.json).")
@common_options()
@with_appcontext
def refetch_documents_command(ids_file, dataset, nips, nips_file, verbose, report, commit):
    """Unduh ulang dokumen staging untuk daftar ID record bermasalah."""
    summary = RunSummary("refetch-documents", dry_run=not commit)
    with fatal_guard(summary, report):
        record_ids = load_id_list(ids_file)
        index = load_index(resolve_dataset_path(dataset), nip_filter=resolve_nip_filter(nips, nips_file))
        client = BknClient.from_config(current_app.config) if commit else None
        refetch_documents(client, index, record_ids, current_app.config['STAGING_FILES_DIR'], summary)
    finish(summary, report)


@click.command("import-jabatan")
@click.option("--dataset", type=click.Path(dir_okay=False), help="Dataset gabungan (default: staging_data/1-final.json).")
@common_options()
@with_appcontext
def import_jabatan(dataset, nips, nips_file, verbose, report, commit):
    """Upsert riwayat jabatan dari dataset dan pindahkan berkas staging ke folder pegawai."""
    summary = RunSummary("import-jabatan", dry_run=not commit)
    with fatal_guard(summary, report):
        nip_filter = resolve_nip_filter(nips, nips_file)
        index = load_index(resolve_dataset_path(dataset), nip_filter=nip_filter)
        summary.count("record_dataset_dilewati", len(index.dropped))
        importer = JabatanImporter(
            db.session, build_lifecycle(summary), summary,
            staging_files_dir=current_app.config['STAGING_FILES_DIR'],
            destination_base=current_app.config['FILE_DESTINATION_BASE'],
        )
        importer.run(index)
    finish(summary, report)


@click.command("validate-staging")
@click.option("--ids-file", type=click.Path(dir_okay=False), help="Hanya periksa ID record dalam file ini.")
@common_options(commit=False)
@with_appcontext
def validate_staging(ids_file, nips, nips_file, verbose, report):
    """Periksa struktur JSON staging dan kelengkapan berkas staging."""
    summary = RunSummary("validate-staging", dry_run=False)
    with fatal_guard(summary, report):
        record_ids = load_id_list(ids_file) if ids_file else None
        validator = StagingValidator(
            summary,
            staging_data_dir=current_app.config['STAGING_DATA_DIR'],
            staging_files_dir=current_app.config['STAGING_FILES_DIR'],
            dataset_filename=current_app.config['DEFAULT_DATASET_FILENAME'],
        )
        validator.run(resolve_nip_filter(nips, nips_file), record_ids)
    finish(summary, report)


@click.command("validate-links")
@click.option("--dataset", type=click.Path(dir_okay=False), help="Bandingkan juga dengan dataset ini.")
@click.option("--no-fs", is_flag=True, help="Lewati pengecekan keberadaan berkas di disk.")
@click.option("--no-status", is_flag=True, help="Jangan anggap file_status != 1 sebagai error.")
@common_options(commit=False)
@with_appcontext
def validate_links(dataset, no_fs, no_status, nips, nips_file, verbose, report):
    """Periksa tautan berkas trx_jabatan ke trx_employee_file dan disk."""
    summary = RunSummary("validate-links", dry_run=False)
    with fatal_guard(summary, report):
        nip_filter = resolve_nip_filter(nips, nips_file)
        index = load_index(os.path.abspath(dataset), nip_filter=nip_filter) if dataset else None
        validator = LinkValidator(db.session, summary, check_fs=not no_fs, check_status=not no_status)
        validator.run(nip_filter, index)
    finish(summary, report)


COMMANDS = (
    dedupe_jabatan,
    cleanup_files,
    restore_files,
    fetch,
    build_dataset,
    refetch_documents_command,
    import_jabatan,
    validate_staging,
    validate_links,
)


def register_commands(app):
    for command in COMMANDS:
        app.cli.add_command(command)
