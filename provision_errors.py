class ProvisioningError(Exception):
    pass


class SessionError(ProvisioningError):
    """Could not authenticate to Graph or Exchange Online. Aborts the run."""


class InputError(ProvisioningError):
    """The input file is unusable (missing file or required columns)."""


class CreationError(ProvisioningError):
    pass


class AssignmentError(ProvisioningError):
    pass


class MailboxError(ProvisioningError):
    pass


class GraphError(RuntimeError):
    """Non-2xx response from Graph or the Exchange admin API."""

    def __init__(self, method: str, url: str, status_code: int, text: str):
        super().__init__(f"{method} {url} failed: {status_code} {text}")
        self.method = method
        self.url = url
        self.status_code = status_code
        self.text = text
