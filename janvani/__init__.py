"""JANVANI client: session, cache and optimistic-state coordination for the grievance API."""

__version__ = "0.1.0"

from .cache import CacheStore
from .coordinator import Coordinator, CoordinatorState
from .errors import (
    AuthenticationError,
    HttpError,
    JanvaniError,
    NetworkError,
    NotFoundError,
    RequestTimeout,
    ServerError,
    ValidationError,
    user_message,
)
from .gateway import Gateway
from .store import LocalStore
from .views import DerivedViews
