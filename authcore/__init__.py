"""OpenID Connect / OAuth2 authorization core: codes, tokens, refresh rotation and signing keys."""
from .clients import ClientRegistry
from .codes import CodeStore
from .config import Settings
from .grants import EndpointResponse, GrantHandler, GrantState
from .keys import KeyManager
from .refresh import RefreshTokenStore
from .tokens import TokenIssuer

__all__ = [
    'ClientRegistry',
    'CodeStore',
    'EndpointResponse',
    'GrantHandler',
    'GrantState',
    'KeyManager',
    'RefreshTokenStore',
    'Settings',
    'TokenIssuer',
]

__version__ = '0.1.0'
