"""Error taxonomy for topology loading, validation and execution.

Validation errors (PluginValidationError, InvalidProvisionManifest) are raised
before any infrastructure is touched. Execution errors (ConvergenceFailed,
InventoryConnectionError) are raised only after cleanup has run.
"""

from typing import Any, Optional


class ConductorError(Exception):
    """Base class for all conductor exceptions."""


class PluginLoadError(ConductorError):
    """Topology source could not be found or read."""


class PluginSyntaxError(ConductorError):
    """Topology source is malformed.

    Carries the file path and, when known, the line the problem was found on.
    """

    def __init__(self, message: str, file_path: Optional[str] = None, line: Optional[int] = None):
        self.file_path = file_path
        self.line = line
        location = ''
        if file_path:
            location = f"{file_path}:{line}: " if line is not None else f"{file_path}: "
        super().__init__(f"{location}{message}")


class PluginValidationError(ConductorError):
    """One or more field-level errors found after a plugin was fully built."""

    def __init__(self, plugin_name: Optional[str], plugin_version: Optional[str], errors: list[str]):
        self.plugin_name = plugin_name
        self.plugin_version = plugin_version
        self.errors = list(errors)
        header = f"Plugin '{plugin_name or 'unnamed'}' ({plugin_version or 'no version'}) is invalid"
        super().__init__(header + ":\n" + "\n".join(f"  - {e}" for e in self.errors))


class DuplicateNameError(ConductorError):
    """An entry with the same name already exists in its owning scope."""

    def __init__(self, kind: str, name: str, owner: Any):
        self.kind = kind
        self.name = name
        self.owner = owner
        super().__init__(f"{kind} '{name}' is already defined on {owner}")


class _LookupMiss(ConductorError):
    kind = 'entry'

    def __init__(self, name: str, owner: Any):
        self.name = str(name)
        self.owner = owner
        super().__init__(f"{self.kind} '{self.name}' not found on {owner}")


class ComponentNotFound(_LookupMiss):
    kind = 'Component'


class CommandNotFound(_LookupMiss):
    kind = 'Command'


class GroupNotFound(_LookupMiss):
    kind = 'Group'


class ActionNotFound(_LookupMiss):
    kind = 'Action'


class EnvironmentNotFound(ConductorError):
    """Environment is not known to the inventory service."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Environment '{name}' not found")


class InventoryError(ConductorError):
    """Inventory service returned an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class InventoryConnectionError(InventoryError):
    """Inventory service could not be reached."""


class InvalidProvisionManifest(ConductorError):
    """Provision manifest is structurally or semantically invalid."""


class InvalidJSONManifest(InvalidProvisionManifest):
    """Manifest source is not valid JSON."""


class ManifestNotFound(ConductorError):
    """Manifest file does not exist."""


class InternalError(ConductorError):
    """API misuse, e.g. saving a manifest without a destination."""


class JobCancelled(ConductorError):
    """The job was cancelled before the operation finished."""


class BootstrapPlanError(ConductorError):
    """Bootstrap plan cannot be built from the stack order and manifest."""


class ConvergenceFailed(ConductorError):
    """One or more nodes failed a convergence run.

    The full per-node report is attached so partial success stays visible.
    """

    def __init__(self, report: Any):
        self.report = report
        failed = ', '.join(sorted(report.failed)) or 'none'
        super().__init__(
            f"Convergence failed on {len(report.failed)} of {len(report.results)} node(s): {failed}"
        )
