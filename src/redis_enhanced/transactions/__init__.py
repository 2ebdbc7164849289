"""Versioned entity lifecycle and transaction envelope."""

from redis_enhanced.transactions.manager import TransactionManager

__all__ = ["TransactionManager"]
