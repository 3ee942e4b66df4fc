"""Command templates and builders for the tunnel client."""

from typing import List, Optional, Dict
from dataclasses import dataclass
from pathlib import Path


class CommandError(Exception):
    """Base exception for command-related errors."""
    pass


class ValidationError(CommandError):
    """Raised when command validation fails."""
    pass


@dataclass
class Command:
    """Command builder with validation."""
    base_cmd: List[str]
    _valid_options: Optional[Dict[str, type]] = None

    def _validate_option(self, opt: str, value: Optional[str]) -> None:
        """Validate option and its value if validation rules exist."""
        if self._valid_options is not None:
            # Remove leading dashes for validation
            opt_name = opt.lstrip('-').replace('-', '_')

            if opt_name not in self._valid_options:
                valid_opts = ", ".join(f"--{opt.replace('_', '-')}"
                                       for opt in self._valid_options.keys())
                raise ValidationError(
                    f"Invalid option '{opt}' for command {self.base_cmd[0]}. "
                    f"Valid options are: {valid_opts}"
                )

            expected_type = self._valid_options[opt_name]
            if expected_type is type(None):
                if value is not None:
                    raise ValidationError(f"Option '{opt}' takes no value")
                return

            if value is None:
                raise ValidationError(f"Option '{opt}' requires a value")

            try:
                if expected_type == Path:
                    Path(value)
                else:
                    expected_type(value)
            except ValueError:
                raise ValidationError(
                    f"Invalid value '{value}' for option '{opt}'. Expected {expected_type.__name__}"
                )

    def _validate_executable(self) -> None:
        """Validate that base command exists."""
        if not self.base_cmd or not self.base_cmd[0]:
            raise ValidationError("Command cannot be empty")

    @classmethod
    def from_str(cls, cmd: str, valid_options: Optional[Dict[str, type]] = None) -> 'Command':
        """Create command from string with optional validation rules."""
        command = cls(cmd.split(), valid_options)
        command._validate_executable()
        return command

    def with_executable(self, executable: str) -> 'Command':
        """Replace the program, e.g. with an absolute path to it."""
        return Command([executable] + self.base_cmd[1:], self._valid_options)

    def with_arg(self, arg: str) -> 'Command':
        """Add single argument."""
        return Command(self.base_cmd + [arg], self._valid_options)

    def with_args(self, *args: str) -> 'Command':
        """Add multiple arguments."""
        return Command(self.base_cmd + list(args), self._valid_options)

    def with_option(self, opt: str, value: Optional[str] = None) -> 'Command':
        """Add option with validation."""
        opt_clean = opt.lstrip('-')
        self._validate_option(opt_clean, value)
        cmd = self.base_cmd.copy()
        cmd.append(f"--{opt_clean}")
        if value is not None:
            cmd.append(str(value))
        return Command(cmd, self._valid_options)

    def with_options(self, **kwargs: Optional[str]) -> 'Command':
        """Add multiple options with validation, in keyword order."""
        cmd = self.base_cmd.copy()
        for opt, value in kwargs.items():
            opt_str = "--" + opt.replace("_", "-")
            self._validate_option(opt, str(value) if value is not None else None)
            cmd.append(opt_str)
            if value is not None:
                cmd.append(str(value))
        return Command(cmd, self._valid_options)

    def build(self) -> List[str]:
        """Get final command list."""
        self._validate_executable()
        return list(self.base_cmd)


OPENCONNECT_OPTIONS = {
    'servercert': str,
    'cafile': Path,
    'mtu': int,
    'syslog': type(None),
    'cookie_on_stdin': type(None),
    'script': Path,
    'interface': str,
}


OPENCONNECT = Command.from_str("openconnect", valid_options=OPENCONNECT_OPTIONS)
