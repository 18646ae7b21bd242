"""Username generation and collision-free allocation against Authentik.

Usernames are an adjective, a noun and a 4-5 digit number run together in
lower case (e.g. ``swiftnode4821``). All randomness comes from ``secrets``.
"""
from __future__ import annotations
import logging
import re
import secrets
from typing import Callable

from scripts import audit
from whmcs_authentik.core.authentik import AuthentikError, UserService

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 50
NUMBER_MIN = 1000
NUMBER_MAX = 99999
USERNAME_PATTERN = re.compile(r"^[a-z]+\d{4,5}$")

ADJECTIVES = (
    # Colors
    "amber", "azure", "blue", "bronze", "coral", "crimson", "cyan", "gold", "green", "indigo",
    "jade", "lime", "magenta", "maroon", "navy", "olive", "orange", "purple", "red", "silver",
    "teal", "violet", "white", "yellow",
    # Qualities
    "swift", "bright", "cool", "dark", "easy", "fast", "good", "happy", "light", "lucky",
    "mega", "nice", "prime", "quick", "rapid", "safe", "tech", "ultra", "vivid", "wise",
    "brave", "calm", "eager", "fierce", "gentle", "keen", "bold", "smart", "strong", "wild",
    # Tech
    "alpha", "beta", "cyber", "delta", "echo", "flux", "gamma", "hyper", "ionic", "jazz",
    "lunar", "micro", "nexus", "omega", "pixel", "quad", "ruby", "solar", "turbo", "vector",
    "binary", "crypto", "digital", "quantum", "neural", "plasma", "sonic", "static", "virtual",
    # Nature
    "storm", "frost", "rain", "wind", "cloud", "snow", "ice", "flame", "sun", "star",
    "moon", "dawn", "dusk", "nova", "cosmic", "ocean", "river", "forest", "mountain", "desert",
)

# Repeated nouns are intentional: they weight the draw
NOUNS = (
    # Tech terms
    "air", "base", "byte", "code", "data", "edge", "file", "grid", "hash", "icon",
    "jump", "key", "link", "mail", "node", "path", "quad", "root", "sync", "task",
    "user", "void", "wave", "xray", "zone", "app", "bit", "cap", "disk", "echo",
    "flow", "gate", "host", "info", "jack", "kit", "log", "map", "net", "port",
    # Computing
    "ram", "cpu", "gpu", "ssd", "lan", "wan", "dns", "ip", "ssl", "ssh",
    "ftp", "http", "ping", "boot", "core", "raid", "bios", "cache", "chip", "cloud",
    "dock", "fork", "heap", "host", "loop", "menu", "mime", "null", "pipe", "pool",
    # Abstract
    "mind", "soul", "zeit", "form", "pulse", "spark", "storm", "void", "ward", "zero",
    "apex", "arch", "core", "dome", "edge", "flex", "fold", "fork", "gate", "hub",
    # Objects
    "beam", "bolt", "cube", "disk", "dome", "gear", "grid", "lens", "node", "orb",
    "ring", "seed", "tank", "tube", "wire", "zone", "arc", "box", "coil", "deck",
)


class AllocationExhaustedError(Exception):
    """No unique username was found within the attempt limit."""
    
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Failed to generate unique username after {attempts} attempts")


def generate_username() -> str:
    """Return a random ``<adjective><noun><number>`` candidate."""
    adjective = secrets.choice(ADJECTIVES)
    noun = secrets.choice(NOUNS)
    number = NUMBER_MIN + secrets.randbelow(NUMBER_MAX - NUMBER_MIN + 1)
    return f"{adjective}{noun}{number}".lower()


def is_valid_username(candidate: str) -> bool:
    """Check a candidate against the generated-username format."""
    return bool(candidate) and USERNAME_PATTERN.match(candidate) is not None


def username_exists(users: UserService, candidate: str) -> bool:
    """Return True when Authentik already has a user with this username.
    
    Raises:
        AuthentikAPIError: Lookup returned a non-200 status
        NetworkError: Transport failure
    """
    return users.username_exists(candidate)


def allocate_unique_username(
    users: UserService,
    *,
    max_attempts: int = MAX_ATTEMPTS,
    generator: Callable[[], str] = generate_username,
) -> str:
    """Generate candidates until one is confirmed absent from Authentik.
    
    Every generated candidate consumes one attempt: malformed candidates and
    repeats are skipped without a lookup, and a failed lookup (including an
    unreadable response) is logged and counted rather than retried.
    
    Args:
        users: User service bound to the target Authentik instance
        max_attempts: Upper bound on generated candidates
        generator: Candidate factory
        
    Returns:
        A username that Authentik reported as unused
        
    Raises:
        AllocationExhaustedError: No candidate succeeded within max_attempts
    """
    tried: set[str] = set()
    for attempt in range(1, max_attempts + 1):
        candidate = generator()
        if not is_valid_username(candidate):
            logger.warning("Attempt %d produced malformed candidate %r", attempt, candidate)
            continue
        if candidate in tried:
            logger.debug("Attempt %d repeated candidate '%s'", attempt, candidate)
            continue
        tried.add(candidate)
        
        try:
            taken = username_exists(users, candidate)
        except AuthentikError as exc:
            logger.warning("Attempt %d: lookup for '%s' failed: %s", attempt, candidate, exc)
            audit.safe_log_module_call(
                "GenerateUsername_Error",
                {"attempt": attempt, "username": candidate},
                {"error": str(exc)},
                success=False,
            )
            continue
        
        if not taken:
            audit.safe_log_module_call(
                "GenerateUsername_Success",
                {"attempts": attempt, "finalUsername": candidate},
                None,
            )
            return candidate
    
    raise AllocationExhaustedError(max_attempts)
