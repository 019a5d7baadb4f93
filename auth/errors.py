"""
auth/errors.py -- Exception hierarchy for the auth package.

Every failure the auth package can signal derives from AuthError so callers
can catch the whole family in one place. Route handlers and the CLI decide
what each kind means for the outside world; nothing in auth/ terminates the
process on its own.

  ValidationError       -- malformed input (token syntax, username, password).
  AuthenticationFailed  -- NotFoundError / ExpiredError. Both collapse to the
                           same generic 401 at the HTTP layer; the subclass
                           only matters for the auth log.
  DuplicateUserError    -- administrative conflict on user creation.
  StoreError            -- the persistent store could not be read or written.
  CryptoError           -- randomness unavailable, cipher failure, or an
                           AEAD open that did not authenticate.

Layer rule: no imports from api/ or core/.
"""


class AuthError(Exception):
    """Base class for every error raised by the auth package."""


class ValidationError(AuthError):
    """Input did not have the expected shape."""


class TokenSyntaxError(ValidationError):
    """The cookie value is not of the form $username=<u>,$value=<v>."""


class InvalidUsernameError(ValidationError):
    pass


class WeakPasswordError(ValidationError):
    pass


class AuthenticationFailed(AuthError):
    """The presented credential does not authenticate anyone."""


class NotFoundError(AuthenticationFailed):
    pass


class ExpiredError(AuthenticationFailed):
    pass


class DuplicateUserError(AuthError):
    pass


class StoreError(AuthError):
    """The persistent store failed. Wraps the underlying SQLAlchemy error."""


class CryptoError(AuthError):
    """The execution environment could not perform a cryptographic operation."""
