"""Inbound request throttling per client IP using SlowAPI."""
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

PATIENT_RATE_LIMIT = "60/minute"
PRESCRIPTION_RATE_LIMIT = "120/minute"
ADMIN_RATE_LIMIT = "30/minute"
HEALTH_RATE_LIMIT = "200/minute"
