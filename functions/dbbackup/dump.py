"""
SQL dump of the currently selected MySQL database.

Produces output close to ``mysqldump --hex-blob --routines --triggers``:
table definitions with batched INSERT statements, then views, triggers and
stored routines. Everything is read through the caller's open connection.
"""

from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from typing import Any, BinaryIO, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

_ESCAPES = str.maketrans(
    {
        "\0": "\\0",
        "\n": "\\n",
        "\r": "\\r",
        "\\": "\\\\",
        "'": "\\'",
        '"': '\\"',
        "\x1a": "\\Z",
    }
)


def quote_identifier(name: str) -> str:
    """Backtick-quote a MySQL identifier."""
    return "`" + name.replace("`", "``") + "`"


def _format_timedelta(value: dt.timedelta) -> str:
    sign = "-" if value < dt.timedelta(0) else ""
    value = abs(value)
    hours, remainder = divmod(value.days * 86400 + value.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    text = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
    if value.microseconds:
        text += f".{value.microseconds:06d}"
    return text


def sql_literal(value: Any) -> str:
    """Render a Python value returned by the driver as a MySQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        return "0x" + raw.hex() if raw else "''"
    if isinstance(value, dt.datetime):
        return "'" + value.isoformat(sep=" ") + "'"
    if isinstance(value, (dt.date, dt.time)):
        return "'" + value.isoformat() + "'"
    if isinstance(value, dt.timedelta):
        return "'" + _format_timedelta(value) + "'"
    if isinstance(value, (set, frozenset)):
        value = ",".join(sorted(str(v) for v in value))
    return "'" + str(value).translate(_ESCAPES) + "'"


class _DumpWriter:
    def __init__(self, stream: BinaryIO):
        self.stream = stream

    def write(self, text: str = "") -> None:
        self.stream.write(text.encode("utf-8"))
        self.stream.write(b"\n")


def _scalar(connection, statement: str) -> Any:
    return connection.exec_driver_sql(statement).scalar()


def _show_create(connection, statement: str, column: int) -> Optional[str]:
    row = connection.exec_driver_sql(statement).first()
    if row is None or len(row) <= column:
        return None
    return row[column]


def _list_tables(connection) -> tuple[list[str], list[str]]:
    tables: list[str] = []
    views: list[str] = []
    for row in connection.exec_driver_sql("SHOW FULL TABLES"):
        name, table_type = row[0], row[1]
        if table_type == "VIEW":
            views.append(name)
        else:
            tables.append(name)
    return tables, views


def _columns_query(table: str) -> str:
    return (
        "SELECT COLUMN_NAME, EXTRA FROM information_schema.COLUMNS"
        f" WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = {sql_literal(table)}"
        " ORDER BY ORDINAL_POSITION"
    )


def _list_columns(connection, table: str) -> list[tuple[str, str]]:
    return [
        (row[0], (row[1] or "").upper())
        for row in connection.exec_driver_sql(_columns_query(table))
    ]


def _is_generated(extra: str) -> bool:
    # DEFAULT_GENERATED marks expression defaults, which still accept inserts.
    return "VIRTUAL GENERATED" in extra or "STORED GENERATED" in extra


def _insert_batches(
    table: str, columns: list[str], rows: Iterable, batch_size: int
) -> Iterable[str]:
    prefix = "INSERT INTO {} ({}) VALUES".format(
        quote_identifier(table), ",".join(quote_identifier(c) for c in columns)
    )
    batch: list[str] = []
    for row in rows:
        batch.append("(" + ",".join(sql_literal(v) for v in row) + ")")
        if len(batch) >= batch_size:
            yield prefix + "\n" + ",\n".join(batch) + ";"
            batch = []
    if batch:
        yield prefix + "\n" + ",\n".join(batch) + ";"


def _dump_table(connection, writer: _DumpWriter, table: str, batch_size: int) -> int:
    quoted = quote_identifier(table)
    create = _show_create(connection, f"SHOW CREATE TABLE {quoted}", 1)
    writer.write("--")
    writer.write(f"-- Table structure for table {quoted}")
    writer.write("--")
    writer.write()
    writer.write(f"DROP TABLE IF EXISTS {quoted};")
    writer.write(f"{create};")
    writer.write()

    # Explicit list: generated columns reject inserts and INVISIBLE ones are
    # missing from SELECT *.
    columns = [
        name for name, extra in _list_columns(connection, table) if not _is_generated(extra)
    ]
    if not columns:
        return 0
    result = connection.exec_driver_sql(
        "SELECT {} FROM {}".format(",".join(quote_identifier(c) for c in columns), quoted),
        execution_options={"stream_results": True},
    )
    row_count = 0

    def counted(rows):
        nonlocal row_count
        for row in rows:
            row_count += 1
            yield row

    statements = _insert_batches(table, columns, counted(result), batch_size)
    first = True
    for statement in statements:
        if first:
            writer.write("--")
            writer.write(f"-- Dumping data for table {quoted}")
            writer.write("--")
            writer.write()
            writer.write(f"LOCK TABLES {quoted} WRITE;")
            first = False
        writer.write(statement)
    if not first:
        writer.write("UNLOCK TABLES;")
        writer.write()
    return row_count


def _dump_views(connection, writer: _DumpWriter, views: list[str]) -> None:
    # Placeholder tables stand in for every view first, so a view may select
    # from another view regardless of the order the views are created in.
    for view in views:
        quoted = quote_identifier(view)
        columns = _list_columns(connection, view)
        writer.write("--")
        writer.write(f"-- Temporary table structure for view {quoted}")
        writer.write("--")
        writer.write()
        writer.write(f"DROP TABLE IF EXISTS {quoted};")
        writer.write(f"DROP VIEW IF EXISTS {quoted};")
        if columns:
            body = ",\n".join(
                f"  {quote_identifier(name)} tinyint NOT NULL" for name, _ in columns
            )
            writer.write(f"CREATE TABLE {quoted} (\n{body}\n);")
        writer.write()

    for view in views:
        quoted = quote_identifier(view)
        create = _show_create(connection, f"SHOW CREATE VIEW {quoted}", 1)
        writer.write("--")
        writer.write(f"-- View structure for view {quoted}")
        writer.write("--")
        writer.write()
        writer.write(f"DROP TABLE IF EXISTS {quoted};")
        writer.write(f"DROP VIEW IF EXISTS {quoted};")
        writer.write(f"{create};")
        writer.write()


def _dump_triggers(connection, writer: _DumpWriter) -> None:
    names = [row[0] for row in connection.exec_driver_sql("SHOW TRIGGERS")]
    for name in names:
        quoted = quote_identifier(name)
        create = _show_create(connection, f"SHOW CREATE TRIGGER {quoted}", 2)
        if create is None:
            logger.warning("Skipping trigger %s: definition not visible", name)
            continue
        writer.write(f"DROP TRIGGER IF EXISTS {quoted};")
        writer.write("DELIMITER ;;")
        writer.write(f"{create};;")
        writer.write("DELIMITER ;")
        writer.write()


def _dump_routines(connection, writer: _DumpWriter) -> None:
    for kind in ("PROCEDURE", "FUNCTION"):
        names = [
            row[1]
            for row in connection.exec_driver_sql(
                f"SHOW {kind} STATUS WHERE Db = DATABASE()"
            )
        ]
        for name in names:
            quoted = quote_identifier(name)
            create = _show_create(connection, f"SHOW CREATE {kind} {quoted}", 2)
            if create is None:
                # Requires SHOW_ROUTINE or ownership of the routine.
                logger.warning("Skipping %s %s: definition not visible", kind.lower(), name)
                continue
            writer.write(f"DROP {kind} IF EXISTS {quoted};")
            writer.write("DELIMITER ;;")
            writer.write(f"{create};;")
            writer.write("DELIMITER ;")
            writer.write()


def write_sql_dump(
    connection,
    stream: BinaryIO,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    now: Optional[dt.datetime] = None,
) -> None:
    """
    Write a full SQL dump of the connection's current database to ``stream``.

    Args:
        connection: An open SQLAlchemy connection with a database selected.
        stream: Binary stream receiving UTF-8 encoded SQL.
        batch_size: Rows per INSERT statement.
        now: Timestamp written in the header (defaults to the current UTC time).
    """
    database = _scalar(connection, "SELECT DATABASE()")
    if not database:
        raise ValueError("No database selected on the connection")

    now = now or dt.datetime.now(dt.timezone.utc)
    writer = _DumpWriter(stream)
    writer.write(f"-- Dump of database {quote_identifier(database)}")
    writer.write(f"-- Server version: {_scalar(connection, 'SELECT VERSION()')}")
    writer.write(f"-- Dump created: {now:%Y-%m-%d %H:%M:%S} UTC")
    writer.write()
    writer.write("SET NAMES utf8mb4;")
    writer.write("SET FOREIGN_KEY_CHECKS=0;")
    writer.write()

    tables, views = _list_tables(connection)
    total_rows = 0
    for table in tables:
        total_rows += _dump_table(connection, writer, table, batch_size)
    _dump_views(connection, writer, views)
    _dump_triggers(connection, writer)
    _dump_routines(connection, writer)

    writer.write("SET FOREIGN_KEY_CHECKS=1;")
    writer.write()
    writer.write("-- Dump completed")
    logger.debug(
        "Dumped %s: %d tables, %d views, %d rows",
        database,
        len(tables),
        len(views),
        total_rows,
    )
