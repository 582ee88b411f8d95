"""
Password policy and unlock throttling for NoteVault.

The master password is never stored, hashed or otherwise. It only ever
feeds key derivation (see crypto.derive_key), so the checks here are:

- a strength rating shown while the password is chosen
- a minimum length enforced at first-time setup
- rate limiting of unlock attempts, which slows online guessing through
  the HTTP surface (offline guessing is slowed by PBKDF2 itself)

Reference: OWASP A07:2021 - Identification and Authentication Failures
"""

import re
import time

from flask import current_app

from notevault.audit_log import log_security_event

DEFAULT_MIN_PASSWORD_LENGTH = 6


def password_strength(password):
    """
    Rate a password as 'weak', 'medium' or 'strong'.

    Short passwords are weak outright; otherwise the rating depends on
    length and how many character classes (upper, lower, digit, special)
    are present.
    """
    if len(password) < 6:
        return 'weak'
    if len(password) < 10:
        return 'medium'

    classes = [
        any(c.isupper() for c in password),
        any(c.islower() for c in password),
        any(c.isdigit() for c in password),
        bool(re.search(r'[!@#$%^&*(),.?":{}|<>]', password)),
    ]
    strength = sum(classes)

    if strength >= 3 and len(password) >= 12:
        return 'strong'
    if strength >= 2 and len(password) >= 8:
        return 'medium'
    return 'weak'


def is_password_acceptable(password):
    """
    Check a new master password against the minimum length.

    Returns:
        Tuple of (is_valid, error_message)
    """
    min_length = current_app.config.get('MIN_PASSWORD_LENGTH', DEFAULT_MIN_PASSWORD_LENGTH)
    if len(password) < min_length:
        return False, f"Password must be at least {min_length} characters"
    return True, None


# Simple in-memory rate limiting of unlock attempts
# There is a single vault, so attempts are tracked overall and per client IP
_unlock_attempts = {
    'total': [],
    'by_ip': {}
}


def _prune(attempts, now, window_seconds):
    return [t for t in attempts if now - t < window_seconds]


def check_rate_limit(client_ip=None, max_attempts=5, window_seconds=300):
    """
    Rate limiting for unlock attempts.

    The overall limit is a multiple of the per-IP limit so one noisy
    client cannot lock everybody out on its own.

    Returns:
        Tuple of (allowed: bool, reason: str)
        - (True, None) if allowed
        - (False, 'ip' | 'total') if blocked
    """
    now = time.time()
    config = current_app.config

    max_attempts = config.get('RATE_LIMIT_MAX_ATTEMPTS', max_attempts)
    window_seconds = config.get('RATE_LIMIT_WINDOW_SECONDS', window_seconds)
    per_ip_enabled = config.get('RATE_LIMIT_PER_IP', True)

    if per_ip_enabled and client_ip:
        attempts = _prune(_unlock_attempts['by_ip'].get(client_ip, []), now, window_seconds)
        _unlock_attempts['by_ip'][client_ip] = attempts
        if len(attempts) >= max_attempts:
            log_security_event(
                'RATE_LIMIT_EXCEEDED',
                {'limit_type': 'ip', 'attempts': len(attempts)},
                ip=client_ip
            )
            return False, 'ip'

    _unlock_attempts['total'] = _prune(_unlock_attempts['total'], now, window_seconds)
    if len(_unlock_attempts['total']) >= max_attempts * 4:
        log_security_event(
            'RATE_LIMIT_EXCEEDED',
            {'limit_type': 'total', 'attempts': len(_unlock_attempts['total'])},
            ip=client_ip
        )
        return False, 'total'

    return True, None


def record_unlock_attempt(client_ip=None):
    """Record an unlock attempt for rate limiting."""
    now = time.time()
    _unlock_attempts['total'].append(now)

    if current_app.config.get('RATE_LIMIT_PER_IP', True) and client_ip:
        _unlock_attempts['by_ip'].setdefault(client_ip, []).append(now)


def clear_unlock_attempts(client_ip=None):
    """Clear unlock attempts after a successful unlock."""
    _unlock_attempts['total'].clear()
    if client_ip:
        _unlock_attempts['by_ip'].pop(client_ip, None)
