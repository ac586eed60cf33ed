"""Exception hierarchy for pubflow.

Errors are grouped by when they can happen in a release run:

- ConfigurationError: the workspace or config is unusable; aborts the
  whole run before anything is mutated.
- ValidationError: a pre-release check failed for one package; nothing has
  been mutated for that package.
- ExternalCommandError: a git or registry call failed.
- TagExistsError: a release tag already exists and force was not given.
- PartialReleaseError: a failure at or after the commit step, carrying the
  residual state so an operator can finish by hand.
"""

from __future__ import annotations


class PubflowError(Exception):
    """Base class for all pubflow errors."""


class ConfigurationError(PubflowError):
    """Invalid configuration or workspace layout (e.g. dependency cycle)."""


class ValidationError(PubflowError):
    """A release precondition is not met.

    Attributes:
        remediation: Human-readable steps to fix the problem, if known.
    """

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        message = super().__str__()
        if self.remediation:
            return f"{message}\n\n{self.remediation}"
        return message


class ChangelogValidationError(ValidationError):
    """A changelog file failed validation.

    Attributes:
        problems: Every problem found, in file order.
    """

    def __init__(self, problems: list[str], *, path: str | None = None) -> None:
        where = f" ({path})" if path else ""
        message = f"Invalid changelog{where}:\n" + "\n".join(f"  - {p}" for p in problems)
        super().__init__(message)
        self.problems = problems


class ExternalCommandError(PubflowError):
    """A subprocess or registry call failed.

    Attributes:
        command: The command that was run, as a list of arguments.
        returncode: Exit status, or None when the call never produced one.
        stderr: Captured error output.
    """

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        message = super().__str__()
        if self.stderr:
            return f"{message}\n{self.stderr.strip()}"
        return message


class TagExistsError(PubflowError):
    """A release tag already exists and force was not requested."""

    def __init__(self, tag: str, remote: str) -> None:
        super().__init__(
            f"Tag {tag} already exists. Use --force to overwrite or manually "
            f"delete the tag with:\n\n"
            f"  git tag -d {tag}\n"
            f"  git push {remote} :refs/tags/{tag}"
        )
        self.tag = tag


class PartialReleaseError(PubflowError):
    """A release failed after it had started mutating git or the registry.

    Attributes:
        residual: What is left behind (e.g. "tag a@1.0.1 created locally").
        hint: Command(s) that finish the release by hand.
    """

    def __init__(self, message: str, *, residual: list[str], hint: str | None = None) -> None:
        super().__init__(message)
        self.residual = residual
        self.hint = hint
