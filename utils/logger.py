"""
Logger utility for the Deadlock Handling Simulator.

Provides tick-by-tick logging with verbosity levels.
"""

from typing import Iterable, Optional
from datetime import datetime


class SimulatorLogger:
    """
    Logger for simulation events and decisions.

    Format: "Tick X: <message>"
    """

    def __init__(self, verbose: bool = False, log_file: Optional[str] = None, console: bool = True):
        """
        Initialize logger.

        Args:
            verbose: Enable debug output
            log_file: Optional file path for logging
            console: Print to stdout
        """
        self.verbose = verbose
        self.log_file = log_file
        self.console = console
        self.file_handle = None

        if self.log_file:
            self.file_handle = open(self.log_file, 'w', encoding='utf-8')
            self._write_header()

    def _write_header(self) -> None:
        """Write log file header."""
        if self.file_handle:
            timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            self.file_handle.write(f"Simulation Log - {timestamp}\n")
            self.file_handle.write("="*60 + "\n\n")

    def log(self, message: str, level: str = "info") -> None:
        """
        Log a message.

        Args:
            message: Message to log
            level: Log level (info, debug, warning, error)
        """
        if level == "debug" and not self.verbose:
            return

        formatted = self._format_message(message, level)

        if self.console:
            print(formatted)

        if self.file_handle:
            self.file_handle.write(formatted + "\n")
            self.file_handle.flush()

    def _format_message(self, message: str, level: str) -> str:
        """Format message with level prefix."""
        if level == "error":
            return f"[ERROR] {message}"
        elif level == "warning":
            return f"[WARNING] {message}"
        elif level == "debug":
            return f"[DEBUG] {message}"
        else:
            return message

    def log_tick(self, tick: int, message: str, level: str = "info") -> None:
        """Log a simulation tick message."""
        self.log(f"Tick {tick}: {message}", level)

    def log_event(self, event) -> None:
        """Log a SimulationEvent at debug level."""
        self.log_tick(event.tick, f"[{event.event_type.value}] {event.message}", "debug")

    def log_deadlock(self, tick: int, members: Iterable[str], recoverable: bool) -> None:
        """
        Log deadlock detection.

        Args:
            tick: Current simulation tick
            members: Customer ids in the cycle
            recoverable: Whether detection/recovery is enabled
        """
        members_str = " -> ".join(members)
        suffix = "" if recoverable else " (detection disabled - deadlock is permanent)"
        self.log_tick(tick, f"DEADLOCK DETECTED - cycle: [{members_str}]{suffix}")

    def log_recovery(self, tick: int, victim_id: str, preempted: Iterable[str]) -> None:
        """
        Log recovery action.

        Args:
            tick: Current simulation tick
            victim_id: Customer whose resources were preempted
            preempted: Resource ids taken from the victim
        """
        preempted = list(preempted)
        resources = ", ".join(preempted) if preempted else "nothing"
        self.log_tick(tick, f"RECOVERY - preempted {resources} from {victim_id}")

    def log_status(self, tick: int, old: str, new: str) -> None:
        self.log_tick(tick, f"status {old} -> {new}")

    def log_system_state(self, tick: int, state_str: str) -> None:
        """
        Log system state snapshot.

        Args:
            tick: Current simulation tick
            state_str: Formatted system state
        """
        if self.verbose:
            self.log_tick(tick, f"System State:\n{state_str}", "debug")

    def close(self) -> None:
        """Close log file if open."""
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None

    def __del__(self):
        """Cleanup on destruction."""
        self.close()
