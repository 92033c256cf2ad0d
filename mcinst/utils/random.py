import secrets

__all__ = ["random_id"]


def random_id() -> str:
    """128 bit random identifier, hex encoded"""
    return secrets.token_hex(16)
