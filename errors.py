"""Registry error definitions."""

from __future__ import annotations


class RegistryError(Exception):
    """Base exception for registry errors."""

    kind = "internal_error"
    status_code = 500


class NotFound(RegistryError):
    status_code = 404


class ServiceNotFound(NotFound):
    kind = "service_not_found"

    def __init__(self, service: str):
        super().__init__(f"service not registered: {service}")
        self.service = service


class AddressNotFound(NotFound):
    kind = "address_not_found"

    def __init__(self, service: str, address: str):
        super().__init__(f"node not registered: {address} (service {service})")
        self.service = service
        self.address = address


class CorruptRecord(RegistryError):
    """Stored payload for a service could not be decoded."""

    kind = "corrupt_record"

    def __init__(self, key: str, reason: str):
        super().__init__(f"corrupt record under {key!r}: {reason}")
        self.key = key
        self.reason = reason


class StoreUnavailable(RegistryError):
    """The key-value store failed or could not be reached."""

    kind = "store_unavailable"


class WriteConflict(RegistryError):
    """A conditional write lost against a concurrent writer."""

    kind = "write_conflict"
    status_code = 409
