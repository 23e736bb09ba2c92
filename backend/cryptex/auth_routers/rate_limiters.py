"""
Rate limiting logic for authentication endpoints.

In-memory rate limiting dicts and check/record functions for:
- Login (per IP + per email)
- Signup (per IP)
"""

import logging
import time
from collections import defaultdict

from fastapi import HTTPException

logger = logging.getLogger(__name__)

# {key: [timestamp, ...]}
_login_attempts: dict = defaultdict(list)
_login_attempts_by_email: dict = defaultdict(list)
_RATE_LIMIT_MAX = 5  # max attempts
_RATE_LIMIT_WINDOW = 900  # 15 minutes in seconds

# Signup rate limiting: 3 per IP per hour
_signup_attempts: dict = defaultdict(list)
_SIGNUP_RATE_LIMIT_MAX = 3
_SIGNUP_RATE_LIMIT_WINDOW = 3600  # 1 hour

_last_prune_time: float = 0.0
_PRUNE_INTERVAL = 3600


def _prune_all_rate_limiters():
    """Periodically remove stale keys from all rate limiter dicts."""
    global _last_prune_time
    now = time.time()
    if now - _last_prune_time < _PRUNE_INTERVAL:
        return
    _last_prune_time = now

    total_pruned = 0
    for store, window in [
        (_login_attempts, _RATE_LIMIT_WINDOW),
        (_login_attempts_by_email, _RATE_LIMIT_WINDOW),
        (_signup_attempts, _SIGNUP_RATE_LIMIT_WINDOW),
    ]:
        stale_keys = [
            k for k, timestamps in store.items()
            if not any(now - t < window for t in timestamps)
        ]
        for k in stale_keys:
            del store[k]
        total_pruned += len(stale_keys)
    if total_pruned:
        logger.debug("Pruned %d stale rate limiter entries", total_pruned)


def reset_rate_limiters():
    """Forget every recorded attempt."""
    _login_attempts.clear()
    _login_attempts_by_email.clear()
    _signup_attempts.clear()


def _too_many(what: str, oldest: float, window: int, now: float) -> HTTPException:
    retry_after = max(1, int(oldest + window - now))
    minutes = (retry_after + 59) // 60  # round up
    return HTTPException(
        status_code=429,
        detail=(
            f"Too many {what} attempts. "
            f"Try again in {minutes} minute{'s' if minutes != 1 else ''}."
        ),
        headers={"Retry-After": str(retry_after)},
    )


def _check_rate_limit(ip: str, email=None):
    """Check if IP or email has exceeded login rate limit. Raises 429."""
    _prune_all_rate_limiters()
    now = time.time()
    _login_attempts[ip] = [t for t in _login_attempts[ip] if now - t < _RATE_LIMIT_WINDOW]
    if len(_login_attempts[ip]) >= _RATE_LIMIT_MAX:
        raise _too_many("login", min(_login_attempts[ip]), _RATE_LIMIT_WINDOW, now)

    if email:
        _login_attempts_by_email[email] = [
            t for t in _login_attempts_by_email[email]
            if now - t < _RATE_LIMIT_WINDOW
        ]
        if len(_login_attempts_by_email[email]) >= _RATE_LIMIT_MAX:
            raise _too_many("login", min(_login_attempts_by_email[email]), _RATE_LIMIT_WINDOW, now)


def _record_attempt(ip: str, email=None):
    """Record a login attempt for rate limiting (IP + email)."""
    _login_attempts[ip].append(time.time())
    if email:
        _login_attempts_by_email[email].append(time.time())


def _check_signup_rate_limit(ip: str):
    """Check if IP has exceeded signup rate limit."""
    now = time.time()
    _signup_attempts[ip] = [t for t in _signup_attempts[ip] if now - t < _SIGNUP_RATE_LIMIT_WINDOW]
    if len(_signup_attempts[ip]) >= _SIGNUP_RATE_LIMIT_MAX:
        raise _too_many("signup", min(_signup_attempts[ip]), _SIGNUP_RATE_LIMIT_WINDOW, now)


def _record_signup_attempt(ip: str):
    """Record a signup attempt for rate limiting."""
    _signup_attempts[ip].append(time.time())
