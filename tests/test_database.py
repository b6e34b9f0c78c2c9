from sqlalchemy import text

from database import build_engine, init_db


def test_sqlite_file_engine_uses_wal(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    try:
        init_db(engine)
        with engine.connect() as conn:
            mode = conn.execute(text("PRAGMA journal_mode")).scalar_one()
            foreign_keys = conn.execute(text("PRAGMA foreign_keys")).scalar_one()
    finally:
        engine.dispose()

    assert mode.lower() == "wal"
    assert foreign_keys == 0
