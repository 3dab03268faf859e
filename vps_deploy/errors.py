"""Error taxonomy for a deploy run.

Every fatal condition is a :class:`DeployError`.  ``cli.main`` is the only
place that catches them; it logs the message and exits with ``exit_code``.
Best-effort steps never raise, they return a ``StepResult`` instead.
"""
from __future__ import annotations


class DeployError(RuntimeError):
    exit_code = 1


class MissingRequiredField(DeployError):
    def __init__(self, fields: list[str]):
        self.fields = list(fields)
        super().__init__(f"Missing required input(s): {', '.join(self.fields)}")


class InvalidField(DeployError):
    pass


class ToolNotFound(DeployError):
    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"{tool} not found, please install it.")


class SyncFailed(DeployError):
    pass


class RemoteUnreachable(DeployError):
    pass


class UnsupportedRemoteOS(DeployError):
    pass


class BootstrapFailed(DeployError):
    def __init__(self, component: str, detail: str = ""):
        self.component = component
        message = f"Failed to bootstrap {component} on the remote host"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class TransferFailed(DeployError):
    pass


class DeployFailed(DeployError):
    pass


class ProxyConfigInvalid(DeployError):
    pass


class ServiceNotActive(DeployError):
    def __init__(self, service: str, state: str = ""):
        self.service = service
        self.state = state
        super().__init__(f"{service} is not active on the remote host (state: {state or 'unknown'})")
