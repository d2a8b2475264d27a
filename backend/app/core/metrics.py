"""Prometheus metrics for the application"""
from prometheus_client import Counter

# Payment webhook metrics
webhook_events_counter = Counter(
    'rumina_webhook_events_total',
    'Total number of payment webhook deliveries',
    ['provider', 'outcome']
)

# Auth metrics
login_attempts_counter = Counter(
    'rumina_login_attempts_total',
    'Total number of login attempts',
    ['status']
)

# Encryption metrics
amount_decryption_failures_counter = Counter(
    'rumina_amount_decryption_failures_total',
    'Total number of stored amounts that failed to decrypt',
    ['reason']
)
