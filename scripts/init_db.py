import sys
from pathlib import Path
import os

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.edms.codes import parse_transmittal_number
from app.edms.constants import TRANSMITTAL_SEQUENCE
from app.edms.models import CodeSequence, Transmittal


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> int:
    """
    Seed the code sequence rows in an idempotent way.
    The transmittal counter is raised to the highest existing TR-<n> code, never lowered.
    Returns the transmittal counter value.
    """
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///edms.db").strip()

    # Own engine, no Flask app: release runs this right after the migrations.
    with _session_scope(db_url) as s:
        seq = s.get(CodeSequence, TRANSMITTAL_SEQUENCE)
        if not seq:
            seq = CodeSequence(name=TRANSMITTAL_SEQUENCE, last_value=0)
            s.add(seq)

        highest = 0
        for code in s.execute(select(Transmittal.code)).scalars():
            highest = max(highest, parse_transmittal_number(code) or 0)
        if highest > (seq.last_value or 0):
            seq.last_value = highest
        value = seq.last_value

    print("Initialized database (seed_only).")
    print(f"Transmittal sequence: {value}")
    return value


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
