"""
Módulo de autenticación y autorización del servicio de órdenes
===============================================================
Valida el JWT emitido por el servicio de usuarios y deja la identidad del
solicitante (Actor) en flask.g para los casos de uso.
"""

import json
import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Optional

import jwt
from flask import request, jsonify, g, current_app

from orders.domain.entities import Actor
from orders.domain.errors import OrderServiceError, UnauthorizedError, ForbiddenError

logger = logging.getLogger(__name__)


class AuthConfigurationError(OrderServiceError):
    kind = "configuration_error"
    http_status = 500


def _extract_token() -> Optional[str]:
    """Busca el token en 'Authorization: Bearer ...' o en 'x-auth-token'."""
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        token = auth_header[7:].strip()
        if token:
            return token
    token = request.headers.get('x-auth-token', '').strip()
    return token or None


def decode_actor(token: str) -> Actor:
    """Decodifica y verifica la firma del token; lanza UnauthorizedError si no es válido."""
    secret = current_app.config.get('JWT_SECRET')
    if not secret:
        logger.error("JWT_SECRET no está configurado.")
        raise AuthConfigurationError("Server configuration error")

    algorithm = current_app.config.get('JWT_ALGORITHM', 'HS256')
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Authentication token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid authentication token")

    user_id = payload.get('userId') or payload.get('sub')
    if not user_id:
        raise UnauthorizedError("Invalid token structure")

    return Actor(
        user_id=str(user_id),
        role=payload.get('role', 'user'),
        email=payload.get('email', ''),
        name=payload.get('name', ''),
    )


def _deny(error: OrderServiceError, reason: str, user_id: str = 'unknown'):
    log_audit_event(
        action='ACCESS_DENIED' if error.http_status in (401, 403) else 'ACCESS_ERROR',
        reason=reason,
        user_id=user_id,
    )
    return jsonify(error.to_dict()), error.http_status


def _authenticate():
    """Retorna (actor, None) o (None, respuesta de error)."""
    token = _extract_token()
    if not token:
        return None, _deny(
            UnauthorizedError("Access denied. No authentication token provided."),
            'Missing authentication token'
        )
    try:
        return decode_actor(token), None
    except OrderServiceError as e:
        return None, _deny(e, e.message)


def require_auth(f):
    """Decorador que exige un usuario autenticado."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor, error_response = _authenticate()
        if error_response:
            return error_response
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """
    Decorador para rutas abiertas a invitados (checkout).
    Si llega un token válido se usa; si no llega ninguno, g.actor queda en None.
    Un token presente pero inválido se rechaza igual que en require_auth.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if _extract_token() is None:
            g.actor = None
            return f(*args, **kwargs)
        actor, error_response = _authenticate()
        if error_response:
            return error_response
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Decorador que requiere rol de administrador."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor, error_response = _authenticate()
        if error_response:
            return error_response

        if not actor.is_admin:
            return _deny(
                ForbiddenError("Access denied. Admin privileges required."),
                f'User role is {actor.role}',
                user_id=actor.user_id
            )

        log_audit_event(action='ACCESS_GRANTED', reason='User has admin role', user_id=actor.user_id)
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def log_audit_event(action, reason, user_id, **extra):
    """
    Registra evento de auditoría para trazabilidad.
    """
    audit_event = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'service': 'orders',
        'action': action,
        'reason': reason,
        'user_id': user_id,
        'endpoint': request.endpoint,
        'ip_address': request.remote_addr,
        'request_id': request.headers.get('X-Request-Id', 'unknown'),
    }
    audit_event.update(extra)

    logger.info(f"AUDIT_EVENT: {json.dumps(audit_event, default=str)}")

    if action == 'ACCESS_DENIED':
        logger.warning(f"ACCESS DENIED - User: {user_id}, Endpoint: {request.endpoint}, Reason: {reason}")
    elif action == 'ACCESS_ERROR':
        logger.error(f"ACCESS ERROR - User: {user_id}, Endpoint: {request.endpoint}, Error: {reason}")
