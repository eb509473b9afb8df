"""Functions for generating bearer token secrets."""

import secrets

from ..exceptions import EntropyUnavailable

TOKEN_SIZE_BYTES = 32
"""Size of a token secret before hex encoding (64 characters after)."""


def generate_token(size: int = TOKEN_SIZE_BYTES) -> str:
    """
    Generate a bearer token secret from the operating system CSPRNG.

    Returns
    -------
    str
        ``size`` random bytes as lowercase hex.

    Raises
    ------
    :class:`.EntropyUnavailable`
        If the system random source cannot be read.

    """
    try:
        return secrets.token_hex(size)
    except OSError as e:
        raise EntropyUnavailable('Could not read secure random bytes') from e
