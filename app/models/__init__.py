from app.models.publication import Publication  # noqa: F401
from app.models.user import User  # noqa: F401
