"""
Domain errors raised by the store, auth and blob layers.
Routers translate them into HTTPException with a user-facing message.
"""


class NotFoundError(Exception):
    pass


class ForbiddenError(Exception):
    pass


class AuthError(Exception):
    pass


class ConflictError(Exception):
    pass
