"""Exception taxonomy for resolution runs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from .resolver.report import ConflictReport
    from .versioning.models import PackageId


class ConstraintSyntaxError(ValueError):
    """A version constraint string could not be parsed."""


class ResolutionError(Exception):
    """Base class for every terminal outcome of a resolution run."""

    retryable = False


class RegistryError(ResolutionError):
    """A registry call failed for a specific package."""

    def __init__(self, message: str, *, package: Optional["PackageId"] = None, registry: Optional[str] = None):
        super().__init__(message)
        self.package = package
        self.registry = registry


class RegistryUnavailable(RegistryError):
    """Transport failure that persisted through every retry."""

    retryable = True


class PackageNotFound(RegistryError):
    """The registry does not know the package.

    ``chain`` lists the packages (outermost first) whose dependencies led here.
    """

    def __init__(
        self,
        message: str,
        *,
        package: Optional["PackageId"] = None,
        registry: Optional[str] = None,
        chain: Sequence["PackageId"] = (),
    ):
        super().__init__(message, package=package, registry=registry)
        self.chain: Tuple["PackageId", ...] = tuple(chain)

    def with_chain(self, chain: Sequence["PackageId"]) -> "PackageNotFound":
        """Return a copy carrying the dependency chain that introduced the package."""
        return PackageNotFound(str(self), package=self.package, registry=self.registry, chain=chain)

    def __str__(self) -> str:
        base = super().__str__()
        if not self.chain:
            return base
        path = " -> ".join(str(p) for p in self.chain)
        return f"{base} (required via {path})"


class RegistryProtocolError(RegistryError):
    """The registry answered with something we cannot interpret."""


class NoCompatibleVersion(ResolutionError):
    """One or more packages have no candidate for the target game/loader."""

    def __init__(self, message: str, report: "ConflictReport"):
        super().__init__(message)
        self.report = report

    @property
    def packages(self) -> Tuple["PackageId", ...]:
        return self.report.packages()


class Unsatisfiable(ResolutionError):
    """The search exhausted every candidate combination."""

    def __init__(self, message: str, report: "ConflictReport"):
        super().__init__(message)
        self.report = report

    @property
    def packages(self) -> Tuple["PackageId", ...]:
        return self.report.packages()


class ResolutionTimedOut(ResolutionError):
    """The overall run deadline elapsed before resolution finished."""

    def __init__(self, deadline: float):
        super().__init__(f"Resolution did not finish within {deadline:g} seconds")
        self.deadline = deadline
