# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()


def configure_sqlite_transactions(engine) -> None:
    """
    Make pysqlite honor SQLAlchemy transaction boundaries.

    The driver defers BEGIN until the first DML statement, which breaks
    SAVEPOINT handling. Turning off its implicit transaction management and
    emitting BEGIN ourselves gives real nested transactions.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")
