class AppError(Exception):
    """Base error for the proctoring backend"""

    def __init__(self, message: str = "", code: str = "app_error"):
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(AppError, ValueError):
    """Invalid monitoring configuration, raised at startup"""

    def __init__(self, message: str):
        super().__init__(message, code="configuration_error")


class ViolationPersistenceError(AppError):
    """The violation store could not durably record a violation"""

    def __init__(self, message: str):
        super().__init__(message, code="violation_persistence_error")
