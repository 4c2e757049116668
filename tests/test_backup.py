"""Tests for base copy statements and backup file ordering."""

from logship.instance.backup import backup_sql, file_name, order_backup_files, restore_sql
from logship.instance.inspect import promote_sql, quote_name, quote_string
from logship.instance.paths import join
from logship.models.types import RestoreMode


def test_backup_statement():
    assert backup_sql("sales", "E:\\b\\sales.bak", compress=True) == (
        "BACKUP DATABASE [sales] TO DISK = N'E:\\b\\sales.bak' WITH INIT, FORMAT, COMPRESSION"
    )


def test_restore_statements():
    assert restore_sql("F:\\s.bak", "sales", RestoreMode.NORECOVERY, replace=True) == (
        "RESTORE DATABASE [sales] FROM DISK = N'F:\\s.bak' WITH NORECOVERY, REPLACE"
    )
    assert restore_sql("F:\\s.trn", "sales", RestoreMode.STANDBY, "F:\\undo", log=True) == (
        "RESTORE LOG [sales] FROM DISK = N'F:\\s.trn' WITH STANDBY = N'F:\\undo\\sales_undo.tuf'"
    )
    assert promote_sql("sales") == "RESTORE DATABASE [sales] WITH RECOVERY"


def test_quoting():
    assert quote_name("a]b") == "[a]]b]"
    assert quote_string("O'Neil") == "N'O''Neil'"


def test_order_backup_files():
    files = [
        "/seed/db1_20260102000000.trn",
        "/seed/db1_20260101000000.bak",
        "/seed/db1_20260103000000.trn",
        "/seed/db1_20260101060000.trn",
        "/seed/readme.txt",
    ]
    assert order_backup_files(files) == [
        "/seed/db1_20260101000000.bak",
        "/seed/db1_20260101060000.trn",
        "/seed/db1_20260102000000.trn",
        "/seed/db1_20260103000000.trn",
    ]
    assert order_backup_files(["/seed/db1_1.trn"]) == []


def test_paths():
    assert file_name("\\\\fs\\share\\db1.bak") == "db1.bak"
    assert join("\\\\fs\\share\\", "db1") == "\\\\fs\\share\\db1"
    assert join("/mnt/share", "db1", "x.bak") == "/mnt/share/db1/x.bak"
