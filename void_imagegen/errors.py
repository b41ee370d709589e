"""Base error types for void_imagegen.

Every stage raises a subclass of ImageGenError carrying a stable error code,
so the CLI can report any failure uniformly and exit non-zero.
"""


class ImageGenError(Exception):
    """Base error for all pipeline failures."""

    def __init__(self, message: str, code: str = "imagegen_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class CommandError(ImageGenError):
    """Raised when an external program exits unsuccessfully."""

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        exit_code: int | None = None,
        output: str = "",
        log_path: str | None = None,
        code: str = "command_failed",
    ) -> None:
        super().__init__(message, code=code)
        self.stage = stage
        self.exit_code = exit_code
        self.output = output
        self.log_path = log_path


__all__ = ["CommandError", "ImageGenError"]
