"""
redis-enhanced CLI.

Usage:
    redis-enhanced ping
    redis-enhanced info --section persistence
    redis-enhanced persistence set --type RDB --save-frequency 3600
    redis-enhanced entity save users --data '{"name": "John"}'
    redis-enhanced entity fetch users <id>
"""

from redis_enhanced.cli.main import app

__all__ = ["app"]
