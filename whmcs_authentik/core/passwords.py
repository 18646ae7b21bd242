"""Initial credential generation for new Authentik accounts."""
from __future__ import annotations
import secrets
import string

PASSWORD_LENGTH = 16
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
CHARACTER_CLASSES = (
    string.ascii_uppercase,
    string.ascii_lowercase,
    string.digits,
    SYMBOLS,
)

_rng = secrets.SystemRandom()


def generate_strong_password(length: int = PASSWORD_LENGTH) -> str:
    """
    Generate a random password with every character class represented.
    
    One character is drawn from each of uppercase, lowercase, digits and
    symbols; the rest come from their union, and the whole string is then
    shuffled.
    
    Args:
        length: Password length (default: 16)
    
    Returns:
        Random password of exactly ``length`` characters
    """
    if length < len(CHARACTER_CLASSES):
        raise ValueError(f"Password length must be at least {len(CHARACTER_CLASSES)}")
    
    chars = [secrets.choice(charset) for charset in CHARACTER_CLASSES]
    alphabet = "".join(CHARACTER_CLASSES)
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    _rng.shuffle(chars)
    return "".join(chars)
