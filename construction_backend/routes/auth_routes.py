from datetime import datetime, timedelta

from flask import Blueprint, request, jsonify, current_app, g

from ..db import SessionLocal
from ..models import User, LoginAttempt, Session
from .auth_helpers import token_required

auth_bp = Blueprint('auth', __name__)

# --- Helpers ---

def get_client_ip():
    """Get client IP address"""
    forwarded = request.environ.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.environ.get('REMOTE_ADDR')


def check_rate_limit(session, email):
    """False once the address has too many recent failed logins"""
    max_attempts = current_app.config['LOGIN_MAX_ATTEMPTS']
    cutoff_time = datetime.utcnow() - timedelta(minutes=current_app.config['LOGIN_WINDOW_MINUTES'])

    recent_failures = session.query(LoginAttempt).filter(
        LoginAttempt.email == email,
        LoginAttempt.attempted_at > cutoff_time,
        LoginAttempt.success.is_(False)
    ).count()

    return recent_failures < max_attempts


def log_login_attempt(email, ip_address, success):
    """Record a login attempt in its own transaction"""
    session = SessionLocal()
    try:
        session.add(LoginAttempt(email=email, ip_address=ip_address, success=success))
        session.commit()
    except Exception as e:
        session.rollback()
        current_app.logger.warning(f"Could not log login attempt: {e}")
    finally:
        session.close()

# --- Routes ---

@auth_bp.route('/auth/login', methods=['POST'])
def login():
    session = SessionLocal()
    try:
        data = request.get_json(silent=True) or {}
        if not data.get('email') or not data.get('password'):
            return jsonify({'error': 'Email and password required'}), 400

        email = str(data['email']).lower().strip()
        ip = get_client_ip()

        if not check_rate_limit(session, email):
            current_app.logger.warning(f"Login throttled for: {email}")
            return jsonify({'error': 'Too many failed attempts'}), 429

        user = session.query(User).filter_by(email=email).first()

        if not user or not user.check_password(str(data['password'])):
            log_login_attempt(email, ip, False)
            current_app.logger.warning(f"Login failed for: {email}")
            return jsonify({'error': 'Invalid email or password'}), 401

        if not user.is_active:
            return jsonify({'error': 'Account disabled'}), 401

        ttl_days = current_app.config['TOKEN_TTL_DAYS']
        token = user.generate_jwt_token(current_app.config['SECRET_KEY'], ttl_days)

        session.add(Session(
            user_id=user.id,
            session_token=token,
            ip_address=ip,
            user_agent=request.headers.get('User-Agent', '')[:255],
            expires_at=datetime.utcnow() + timedelta(days=ttl_days)
        ))
        user.last_login = datetime.utcnow()
        session.commit()

        log_login_attempt(email, ip, True)
        current_app.logger.info(f"User logged in: {email}")

        return jsonify({
            'success': True,
            'token': token,
            'user': user.to_dict()
        }), 200

    except Exception as e:
        session.rollback()
        current_app.logger.error(f"Login error: {e}")
        return jsonify({'error': 'Login failed'}), 500
    finally:
        session.close()


@auth_bp.route('/auth/logout', methods=['POST'])
@token_required
def logout():
    session = SessionLocal()
    try:
        session.query(Session).filter_by(session_token=g.token).delete(synchronize_session=False)
        session.commit()
        return jsonify({'success': True, 'message': 'Logged out'}), 200
    except Exception as e:
        session.rollback()
        current_app.logger.error(f"Logout error: {e}")
        return jsonify({'error': 'Logout failed'}), 500
    finally:
        session.close()


@auth_bp.route('/auth/me', methods=['GET'])
@token_required
def current_user():
    return jsonify({'user': g.user.to_dict()}), 200
