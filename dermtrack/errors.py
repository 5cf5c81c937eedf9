"""Typed failures raised by the session core and the inference client."""


class DermTrackError(Exception):
    """Base class for every DermTrack error"""


class ConfigurationError(DermTrackError):
    """The inference credential is missing"""


class ResponseFormatError(DermTrackError):
    """The inference service answered with malformed or incomplete JSON"""

    def __init__(self, message: str, payload: str = ""):
        super().__init__(message)
        self.payload = payload


class DuplicateEmailError(DermTrackError):
    pass


class InvalidCredentialsError(DermTrackError):
    pass


class PatientNotFoundError(DermTrackError):
    pass


class ImageNotFoundError(DermTrackError):
    pass


class SameImageError(DermTrackError):
    pass


class DecodeError(DermTrackError):
    """A stored image payload is not a valid data URL"""
