# -*- coding: utf-8 -*-

class VaultSessionError(Exception):
    """Base Error class."""


class ConfigurationError(VaultSessionError):
    CUSTOM_ERROR_MESSAGE = "Authentication method {} requires {} in configuration"

    def __init__(self, method, field):
        super(ConfigurationError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(method, field))
        self._method = method
        self._field = field

    @property
    def method(self):
        return self._method

    @property
    def field(self):
        return self._field


class UnsupportedAuthMethod(ConfigurationError):
    CUSTOM_ERROR_MESSAGE = "Auth method {} is not supported"

    def __init__(self, method):
        super(ConfigurationError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(method))
        self._method = method
        self._field = "authentication"


class AvailabilityError(VaultSessionError):
    CUSTOM_ERROR_MESSAGE = "{} not available"

    def __init__(self, service):
        super(AvailabilityError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(service))
        self._service = service

    @property
    def service(self):
        return self._service


class UpstreamError(VaultSessionError):
    CUSTOM_ERROR_MESSAGE = "Error from {} (status {}): {}"

    def __init__(self, service, status_code, body):
        super(UpstreamError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(service,
                                                                             status_code,
                                                                             body))
        self._service = service
        self._status_code = status_code
        self._body = body

    @property
    def service(self):
        return self._service

    @property
    def status_code(self):
        return self._status_code

    @property
    def body(self):
        return self._body


class ResponseShapeError(VaultSessionError):
    CUSTOM_ERROR_MESSAGE = "Response from {} has no {}"

    def __init__(self, source, field):
        super(ResponseShapeError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(source, field))
        self._source = source
        self._field = field

    @property
    def source(self):
        return self._source

    @property
    def field(self):
        return self._field


class NotAuthenticatedError(VaultSessionError):
    """Raised when a secret operation is issued before a token exists."""


class RenewalError(VaultSessionError):
    """Base for failures raised inside a lease supervisor."""


class RenewalExhaustedError(RenewalError):
    CUSTOM_ERROR_MESSAGE = "Cannot renew {}: {}"

    def __init__(self, lease, reason):
        super(RenewalExhaustedError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(lease, reason))
        self._lease = lease
        self._reason = reason

    @property
    def lease(self):
        return self._lease

    @property
    def reason(self):
        return self._reason


class TransportError(RenewalError):
    CUSTOM_ERROR_MESSAGE = "Transport failure renewing {}: {}"

    def __init__(self, lease, cause):
        super(TransportError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(lease, cause))
        self._lease = lease
        self._cause = cause

    @property
    def lease(self):
        return self._lease

    @property
    def cause(self):
        return self._cause


class LeaseNotRenewable(VaultSessionError):
    CUSTOM_ERROR_MESSAGE = "{} is not renewable and cannot be supervised"

    def __init__(self, lease):
        super(LeaseNotRenewable, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(lease))
        self._lease = lease

    @property
    def lease(self):
        return self._lease
