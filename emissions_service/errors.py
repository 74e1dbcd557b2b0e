# errors.py
class EmissionsServiceError(Exception):
    """Base error; status_code is the HTTP status the API maps it to."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EmissionsServiceError):
    status_code = 400


class MissingRequiredField(ValidationError):
    def __init__(self, *fields: str):
        self.fields = list(fields)
        super().__init__(f"Missing required fields: {', '.join(fields)}")


class InvalidVehicleType(ValidationError):
    def __init__(self, vehicle_type):
        self.vehicle_type = vehicle_type
        super().__init__(f"Invalid vehicle type: {vehicle_type!r}")


class NoFieldsToUpdate(ValidationError):
    def __init__(self):
        super().__init__("No fields to update")


class NotFoundError(EmissionsServiceError):
    status_code = 404


class DeliveryNotFound(NotFoundError):
    def __init__(self, delivery_id):
        self.delivery_id = delivery_id
        super().__init__("Delivery not found")


class UpstreamLookupError(EmissionsServiceError):
    status_code = 400


class ConfigurationError(EmissionsServiceError):
    status_code = 500


class PersistenceError(EmissionsServiceError):
    status_code = 500
