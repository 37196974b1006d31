from tradyfi.db.base import Base
from tradyfi.db.session import engine
from tradyfi.db import models  # noqa: F401

if __name__ == "__main__":
    print("Creating notification tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created:", ", ".join(sorted(Base.metadata.tables)))
