"""Rekonsiliasi riwayat jabatan dan berkas pegawai terhadap data BKN."""
