from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models so metadata.create_all can discover them
from docguard.models import (  # noqa: E402,F401
    account,
    audit,
    document,
    permission,
)
