from .base import GatewayTimeoutError  # noqa: F401
from .base import GuardedGateway  # noqa: F401
from .base import NotConnectedError  # noqa: F401
from .base import RemoteDataGateway  # noqa: F401
from .base import RemoteError  # noqa: F401
from .base import SessionNotFoundError  # noqa: F401
