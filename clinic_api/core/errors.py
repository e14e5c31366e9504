"""Error taxonomy shared by services and routes.

Services raise these; the handlers registered in ``clinic_api.main`` turn
them into the ``{"success": false, "message": ...}`` envelope.
"""

from fastapi import status


class ClinicError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(ClinicError):
    status_code = status.HTTP_400_BAD_REQUEST


class PermissionDeniedError(ClinicError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ClinicError):
    status_code = status.HTTP_404_NOT_FOUND


class SlotUnavailableError(ClinicError):
    status_code = status.HTTP_400_BAD_REQUEST


class StorageUnavailableError(ClinicError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = 'Database unavailable. Please try again later.'):
        super().__init__(message)


class PaymentVerificationError(ClinicError):
    """Gateway callback could not be trusted or matched to an appointment."""

    status_code = status.HTTP_400_BAD_REQUEST
