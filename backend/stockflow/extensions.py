# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()


def enable_sqlite_transactions(engine) -> None:
    """
    Let SQLAlchemy own BEGIN on pysqlite connections.

    pysqlite defers BEGIN until the first DML statement, so a SAVEPOINT issued
    first in a unit of work commits on RELEASE. Emitting BEGIN ourselves keeps
    savepoints nested inside the outer transaction.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")
