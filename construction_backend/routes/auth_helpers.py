from datetime import datetime
from functools import wraps

import jwt
from flask import request, jsonify, current_app, g

from ..db import SessionLocal
from ..models import User, Session


def get_bearer_token():
    """Return the token from 'Authorization: Bearer <token>', '' when absent, None when malformed."""
    auth_header = request.headers.get('Authorization')
    if not auth_header:
        return ''
    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0].lower() != 'bearer' or not parts[1]:
        return None
    return parts[1]


def token_required(f):
    """Decorator to require a valid JWT backed by a live session record"""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = get_bearer_token()
        if token is None:
            return jsonify({'error': 'Invalid token format'}), 401
        if not token:
            return jsonify({'error': 'Token is missing'}), 401

        local_session = SessionLocal()
        try:
            try:
                payload = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=['HS256'])
            except jwt.ExpiredSignatureError:
                return jsonify({'error': 'Token expired'}), 401
            except jwt.InvalidTokenError:
                return jsonify({'error': 'Invalid token'}), 401

            user = local_session.get(User, payload.get('user_id'))
            if not user or not user.is_active:
                return jsonify({'error': 'User not found or inactive'}), 401

            session_record = local_session.query(Session).filter_by(
                session_token=token,
                user_id=user.id
            ).first()
            if not session_record or session_record.expires_at < datetime.utcnow():
                return jsonify({'error': 'Token expired'}), 401

            g.user = user
            g.token = token
        except Exception as e:
            current_app.logger.error(f"Token verification failed: {e}")
            return jsonify({'error': 'Token verification failed'}), 401
        finally:
            local_session.close()

        return f(*args, **kwargs)

    return decorated
