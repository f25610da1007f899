"""
Exceptions for dicomrelay
Everything raised on purpose derives from DicomRelayError so the batch loop
has a single thing to catch per item.
"""


class DicomRelayError(Exception):
    # general container for errors
    pass


class ConfigError(DicomRelayError):
    # raised on a bad or incomplete whitelist / run configuration
    pass


class ParseError(DicomRelayError):
    # raised on malformed whitelist rules or descriptor lines

    def __init__(self, message: str, line_number: int | None = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class FormatError(ParseError):
    # raised when a descriptor value has the wrong format (e.g. port)
    pass


class InvalidKeyError(DicomRelayError):
    # raised on a wrong key size or key type
    pass


class UnwrapError(DicomRelayError):
    # raised when a wrapped key cannot be recovered; never says why
    pass


class IntegrityError(DicomRelayError):
    # raised on a digest mismatch
    pass


class TruncatedInputError(DicomRelayError):
    # raised when a stream ends before a fixed-size prefix is read
    pass


class TransportError(DicomRelayError):
    # raised on remote connection / transfer failures
    pass


class IncompleteDescriptorError(DicomRelayError):
    # raised when a descriptor lacks one of its mandatory keys
    pass
