"""
HTTP surface: health, calls, SMS conversations and provider webhooks.
"""
