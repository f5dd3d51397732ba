# Import every model so relationships resolve regardless of import order.
from refresh_guard.models.refresh_token import RefreshToken  # noqa: F401
from refresh_guard.models.user import User  # noqa: F401
