"""Utility modules for vaultwallet."""

from vaultwallet.utils.locks import SecretLock, get_secret_lock, secret_lock

__all__ = ["SecretLock", "get_secret_lock", "secret_lock"]
