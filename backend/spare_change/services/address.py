import base58
from spare_change.errors import InvalidAddress

PUBLIC_KEY_LENGTH = 32


def validate_address(address: str) -> str:
    """Return the address unchanged if it decodes to a 32-byte public key."""
    if not isinstance(address, str) or not 32 <= len(address) <= 44:
        raise InvalidAddress(f"Invalid Solana address: {address}")
    try:
        decoded = base58.b58decode(address)
    except ValueError:
        raise InvalidAddress(f"Invalid Solana address: {address}")
    if len(decoded) != PUBLIC_KEY_LENGTH:
        raise InvalidAddress(f"Invalid Solana address: {address}")
    return address
