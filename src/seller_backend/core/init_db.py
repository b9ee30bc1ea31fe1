"""Initialize the database tables."""

from seller_backend.core import models  # noqa: F401  registers the tables on Base
from seller_backend.core.database import Base, engine

print("Creating database tables...")
Base.metadata.create_all(bind=engine)
print("Tables created successfully!")
