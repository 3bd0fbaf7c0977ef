from fastapi import status


class DomainError(Exception):
    """A workflow failure carrying a message key that the API localizes."""

    def __init__(self, key: str, status_code: int = status.HTTP_400_BAD_REQUEST, **params):
        super().__init__(key)
        self.key = key
        self.status_code = status_code
        self.params = params


class NotFound(DomainError):
    def __init__(self, key: str = "not_found", **params):
        super().__init__(key, status.HTTP_404_NOT_FOUND, **params)


class Forbidden(DomainError):
    def __init__(self, key: str = "forbidden", **params):
        super().__init__(key, status.HTTP_403_FORBIDDEN, **params)


class ActionInProgress(DomainError):
    def __init__(self, **params):
        super().__init__("action_in_progress", status.HTTP_409_CONFLICT, **params)
