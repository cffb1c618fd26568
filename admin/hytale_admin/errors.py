class SetupError(Exception):
    """Base class for errors reported to the setup wizard as JSON."""

    status_code = 400

    def __init__(self, message, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self):
        body = {'success': False, 'error': self.message}
        body.update(self.extra)
        return body


class SetupLockedError(SetupError):
    def __init__(self, message='Setup is already complete'):
        super().__init__(message)


class ConfigurationRequired(SetupError):
    """The deployment is missing configuration the operator has to add."""

    def __init__(self, message, instructions):
        super().__init__(message, needsEnvConfig=True, instructions=list(instructions))
        self.instructions = list(instructions)


class AuthRejected(SetupError):
    """The identity provider refused the grant. Terminal for that grant."""


class TransientAuthError(SetupError):
    """Network or container hiccup while polling. The caller keeps polling."""

    status_code = 503


class OperationInProgress(SetupError):
    status_code = 409
