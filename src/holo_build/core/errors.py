"""
Error taxonomy for package builds.

Every build failure is terminal for the invocation; nothing here is retried.
"""

from __future__ import annotations


class HoloBuildError(Exception):
    """Base exception for all holo-build errors."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class PackageValidationError(HoloBuildError):
    """The package model violates generic or format-specific rules."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        lines = "\n".join(f"  - {error}" for error in self.errors)
        super().__init__(f"Package validation failed with {len(self.errors)} error(s):\n{lines}")


class FilesystemTreeError(HoloBuildError):
    """Invalid manipulation of the in-memory filesystem tree."""

    pass


class UnexpectedFileNameError(HoloBuildError):
    """A generator recommended a file name that is not a plain file name."""

    def __init__(self, file_name: str) -> None:
        self.file_name = file_name
        super().__init__(f'Unexpected filename generated: "{file_name}"')


class ToolError(HoloBuildError):
    """An external tool (bsdtar, fakeroot) exited unsuccessfully."""

    def __init__(self, command: list[str], returncode: int, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command {' '.join(command)!r} failed with exit code {returncode}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)


class UnsupportedBuildMethodError(Exception):
    """
    Raised by Generator.build_in_memory() when the generator needs a real
    filesystem tree. The orchestrator answers it by materializing the tree and
    calling Generator.build(); it never reaches the user.
    """

    pass
