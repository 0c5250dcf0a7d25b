from __future__ import annotations

import importlib
import logging
import subprocess
import sys
from importlib import metadata
from typing import Callable, List, Optional, Sequence, Tuple

from packaging.version import InvalidVersion, Version

from .audit import JsonAuditLogger
from .config import DependencySpec
from .errors import DependencyInstallError, PreconditionError
from .models import StepName, StepOutcome

logger = logging.getLogger(__name__)

VersionLookup = Callable[[str], Optional[str]]


def check_runtime(minimum: str, current: Optional[Tuple[int, ...]] = None) -> None:
    """Raise PreconditionError when the interpreter is older than ``minimum``."""
    running = current or tuple(sys.version_info[:3])
    running_text = ".".join(str(part) for part in running)
    if Version(running_text) < Version(minimum):
        raise PreconditionError(f"Python {minimum} or newer is required; running {running_text}")


def installed_version(name: str) -> Optional[str]:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return None


class PipInstaller:
    """Installs distributions into the running interpreter with pip."""

    def install(self, requirement: str, upgrade: bool = False, force: bool = False) -> None:
        command = [sys.executable, "-m", "pip", "install", "--disable-pip-version-check"]
        if upgrade:
            command.append("--upgrade")
        if force:
            command.append("--force-reinstall")
        command.append(requirement)
        logger.debug("Running %s", " ".join(command))
        try:
            subprocess.run(command, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as exc:
            raise DependencyInstallError(requirement, (exc.stderr or str(exc)).strip()) from exc
        except OSError as exc:
            raise DependencyInstallError(requirement, str(exc)) from exc
        # Newly installed distributions must be importable in this process.
        importlib.invalidate_caches()


class DependencyManager:
    """Makes sure every required distribution is installed at its minimum version.

    Missing or outdated distributions must install successfully. Distributions
    that already satisfy their minimum are upgraded opportunistically when
    ``update_installed`` is set; a failed upgrade is logged and the existing
    installation is kept.
    """

    def __init__(
        self,
        requirements: Sequence[DependencySpec],
        audit_logger: JsonAuditLogger,
        installer: Optional[PipInstaller] = None,
        version_lookup: Optional[VersionLookup] = None,
        update_installed: bool = True,
    ):
        self.requirements = list(requirements)
        self.audit = audit_logger
        self.installer = installer or PipInstaller()
        self.version_lookup = version_lookup or installed_version
        self.update_installed = update_installed

    def ensure(self, skip: bool = False, force: bool = False) -> StepOutcome:
        if skip:
            self.audit.info("dependency_phase_skipped")
            return StepOutcome.skipped(StepName.MODULES, "Install/update phase bypassed")

        changed: List[str] = []
        for spec in self.requirements:
            if self._ensure_one(spec, force):
                changed.append(spec.name)

        if changed:
            return StepOutcome.succeeded(StepName.MODULES, "Installed or updated: " + ", ".join(changed))
        return StepOutcome.skipped(StepName.MODULES, "All required packages already present")

    def _ensure_one(self, spec: DependencySpec, force: bool) -> bool:
        current = self.version_lookup(spec.name)

        if force:
            self.installer.install(spec.requirement, upgrade=True, force=True)
            self.audit.info("dependency_reinstalled", package=spec.name, previous=current)
            return True

        if current is None:
            self.installer.install(spec.requirement)
            self.audit.info("dependency_installed", package=spec.name)
            return True

        if not self._satisfies(spec, current):
            self.installer.install(spec.requirement, upgrade=True)
            self.audit.info("dependency_upgraded", package=spec.name, previous=current)
            return True

        if not self.update_installed:
            self.audit.info("dependency_present", package=spec.name, version=current)
            return False

        try:
            self.installer.install(spec.requirement, upgrade=True)
        except DependencyInstallError as exc:
            self.audit.warning("dependency_update_failed", package=spec.name, version=current, error=str(exc))
            return False

        updated = self.version_lookup(spec.name)
        if updated != current:
            self.audit.info("dependency_updated", package=spec.name, previous=current, version=updated)
            return True
        self.audit.info("dependency_present", package=spec.name, version=current)
        return False

    @staticmethod
    def _satisfies(spec: DependencySpec, current: str) -> bool:
        if not spec.minimum_version:
            return True
        try:
            return Version(current) >= Version(spec.minimum_version)
        except InvalidVersion:
            logger.debug("Unparseable version %s for %s", current, spec.name)
            return False
