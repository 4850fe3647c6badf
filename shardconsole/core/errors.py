"""Exception types shared across the console."""

from __future__ import annotations


class ConsoleError(RuntimeError):
    pass


class ConsoleStartupError(ConsoleError):
    pass


class BindExhaustedError(ConsoleStartupError):
    def __init__(self, host: str, port_start: int, port_end: int) -> None:
        super().__init__(f"no available ports on {host} between {port_start} and {port_end}")
        self.host = host
        self.port_start = port_start
        self.port_end = port_end


class ConsoleConfigError(ValueError):
    pass


class CommandError(ConsoleError):
    """Dispatch failure whose message is safe to show to the operator."""


class SimulationError(ConsoleError):
    pass
