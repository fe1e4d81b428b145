"""Error taxonomy shared by the store, the orchestrator and the API layer."""


class ChatVaultError(Exception):
    status_code: int = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidArgument(ChatVaultError):
    status_code = 400


class NotFound(ChatVaultError):
    status_code = 404


class Conflict(ChatVaultError):
    status_code = 409


class CredentialCorrupt(ChatVaultError):
    """A well-formed sealed token failed authenticated decryption.

    Means the stored data was altered or the encryption key changed. Never
    treated as "no credential".
    """

    status_code = 500


class NoCredentialAvailable(ChatVaultError):
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(
            message or "No API key available. Please add your Gemini API key in settings."
        )


class ProviderFailure(ChatVaultError):
    status_code = 502


class ReplyNotPersisted(ChatVaultError):
    """The provider answered but the reply could not be stored."""

    status_code = 500

    def __init__(self, reply: str, message: str = ""):
        super().__init__(message or "Assistant reply was generated but could not be saved")
        self.reply = reply


class ConfigurationError(ChatVaultError):
    pass
