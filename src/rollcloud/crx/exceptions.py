class BuildError(Exception):
    pass


class KeyMaterialError(BuildError):
    pass


class InputError(BuildError):
    pass


class SigningError(BuildError):
    pass


class FormatError(BuildError):
    pass


class OutputError(BuildError):
    pass


class VerificationError(Exception):
    pass


class InvalidHeaderError(VerificationError):
    pass


class SignatureVerificationError(VerificationError):
    pass
