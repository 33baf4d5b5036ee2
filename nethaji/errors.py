"""Domain exceptions raised by the service and mapped to HTTP responses in main."""


class NethajiError(Exception):
    """Base class for expected, client-facing failures."""

    status_code = 400
    error = 'Bad request'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(NethajiError):
    status_code = 404
    error = 'Not found'


class AccessDeniedError(NethajiError):
    status_code = 403
    error = 'Access denied'


class ConflictError(NethajiError):
    status_code = 409
    error = 'Conflict'


class GeofenceError(NethajiError):
    """GPS fix lies outside the village geofence."""

    error = 'Location verification failed'


class InvalidTransitionError(NethajiError):
    error = 'Invalid status'


class ImportFormatError(NethajiError):
    """Uploaded roster file could not be understood."""

    error = 'Invalid roster file'
