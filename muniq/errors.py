"""
Error taxonomy shared by the auth and reconciliation code.

Every error carries the HTTP status and the message the client sees. The
server turns them into `{"success": false, "message": ...}` responses.
"""


class MuniqError(Exception):
    status_code = 500
    message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ----------------------------
# input validation
# ----------------------------
class MissingFields(MuniqError):
    status_code = 400
    message = "Missing required fields"

    def __init__(self, fields=None, message: str | None = None):
        self.fields = list(fields or [])
        if message is None and self.fields:
            message = f"Missing required fields: {', '.join(self.fields)}"
        super().__init__(message)


class InvalidRequest(MuniqError):
    status_code = 400
    message = "Invalid request"


class InvalidFile(MuniqError):
    status_code = 400
    message = "Please upload a valid image file"


# ----------------------------
# integrity / security
# ----------------------------
class SignatureMismatch(MuniqError):
    status_code = 400
    message = "Payment verification failed. Invalid signature."


class RegistrationNotFound(MuniqError):
    status_code = 404
    message = "Registration not found"


class PaymentNotFound(MuniqError):
    status_code = 404
    message = "Payment not found"


class DuplicatePayment(MuniqError):
    status_code = 409
    message = "Payment already exists for this registration"


class AuthError(MuniqError):
    status_code = 401
    message = "Invalid token"


class InvalidCredentials(AuthError):
    message = "Invalid password"


class MissingToken(AuthError):
    message = "No token provided"


class MalformedToken(AuthError):
    message = "Invalid token"


class TokenExpired(AuthError):
    message = "Token expired"


class DeviceMismatch(AuthError):
    message = "Token not valid for this device"


class AuthNotConfigured(MuniqError):
    status_code = 500
    message = "Admin authentication not configured"


# ----------------------------
# dependency failures
# ----------------------------
class StorageFailure(MuniqError):
    status_code = 500
    message = "Failed to upload screenshot. Please try again."


class GatewayFailure(MuniqError):
    status_code = 500
    message = "Payment gateway request failed. Please try again."


class UnknownDatabaseError(MuniqError):
    status_code = 500
    message = "Database error occurred. Please try again."
