"""
Autenticación de peticiones: convierte el Bearer JWT en un RequestContext
explícito que se pasa a cada caso de uso (sin estado global de sesión).
"""
import logging
from functools import wraps

import jwt
from flask import current_app, g, request

from quickcommerce.domain.entities import RequestContext, Role
from quickcommerce.domain.errors import Unauthorized

logger = logging.getLogger(__name__)


def decode_request_context(auth_header: str, secret: str, algorithm: str = "HS256") -> RequestContext:
    if not auth_header or not auth_header.startswith('Bearer '):
        raise Unauthorized()

    token = auth_header[7:]  # Remover 'Bearer '
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token inválido: {e}")
        raise Unauthorized("Token inválido o expirado.")

    caller_id = payload.get('sub')
    try:
        role = Role(payload.get('role'))
    except ValueError:
        raise Unauthorized(f"Rol desconocido en el token: {payload.get('role')}")
    if not caller_id:
        raise Unauthorized("El token no identifica al usuario.")
    return RequestContext(caller_id=str(caller_id), role=role)


def require_auth(f):
    """Decorador que exige un token válido y deja el contexto en g.request_context."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.request_context = decode_request_context(
            request.headers.get('Authorization', ''),
            current_app.config.get('JWT_SECRET', ''),
            current_app.config.get('JWT_ALGORITHM', 'HS256'),
        )
        return f(*args, **kwargs)

    return decorated_function


def issue_token(caller_id: str, role: Role, secret: str, algorithm: str = "HS256") -> str:
    """Emite un token firmado (lo usan las pruebas y las herramientas internas)."""
    return jwt.encode({'sub': caller_id, 'role': role.value}, secret, algorithm=algorithm)
