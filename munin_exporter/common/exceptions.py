"""
Custom exceptions for the munin exporter.
Hierarchical exception structure separating recoverable from fatal failures.
"""


class BaseExporterException(Exception):
    """Base exception for the munin exporter"""
    pass


class MuninConnectionError(BaseExporterException):
    """Could not open a connection to munin-node or validate its banner"""
    pass


class MuninTransportError(BaseExporterException):
    """Unexpected socket error; the stream state is no longer trustworthy"""
    pass


class MuninProtocolError(BaseExporterException):
    """munin-node answered a command with something we cannot frame"""
    pass


class MetricRegistrationError(BaseExporterException):
    """A metric could not be registered with the collector registry"""
    pass


class ConfigurationError(BaseExporterException):
    """Error in configuration loading or validation"""
    pass
