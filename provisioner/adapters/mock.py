"""
Mock command runner — universal test double for external commands.

Used in mock mode to simulate provisioning without touching the host.
Returns success for everything by default; failures can be configured
per command prefix, either permanently or for the next N calls.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TextIO

from provisioner.adapters.shell.command import CommandRunner
from provisioner.core.models.receipt import Receipt


@dataclass
class CommandCall:
    """One recorded invocation."""

    command: list[str]
    cwd: str | None = None
    env: list[str] | None = None
    stream_output: bool = False

    @property
    def program(self) -> str:
        return os.path.basename(self.command[0])

    def env_dict(self) -> dict[str, str]:
        """The env overlay as a mapping (empty when none was given)."""
        return dict(item.partition("=")[::2] for item in self.env or [])


@dataclass
class _Scripted:
    key: tuple[str, ...]
    receipts: list[Receipt] = field(default_factory=list)


class MockCommandRunner(CommandRunner):
    """Record commands instead of running them.

    Responses are keyed by a command prefix whose first element is the
    program's basename, e.g. ``("docker", "pull")`` or ``("nvidia-smi",)``.
    The most specific matching key wins. Scripted receipts are consumed
    in order; the last one sticks.
    """

    def __init__(self, default_output: str = "[mock] executed", stdout: TextIO | None = None):
        super().__init__(stdout=stdout)
        self._default_output = default_output
        self._scripts: list[_Scripted] = []
        self._call_log: list[CommandCall] = []

    @property
    def call_log(self) -> list[CommandCall]:
        """All invocations this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def commands(self) -> list[list[str]]:
        return [call.command for call in self._call_log]

    def calls_to(self, *key: str) -> list[CommandCall]:
        """Recorded calls whose command starts with ``key``."""
        return [call for call in self._call_log if _matches(key, call.command)]

    def set_response(self, key: Sequence[str], *receipts: Receipt) -> None:
        """Script the receipts returned for commands starting with ``key``."""
        self._scripts = [s for s in self._scripts if s.key != tuple(key)]
        self._scripts.append(_Scripted(key=tuple(key), receipts=list(receipts)))

    def set_failure(
        self,
        key: Sequence[str],
        error: str = "Mock failure",
        times: int | None = None,
        output: str = "",
    ) -> None:
        """Make commands starting with ``key`` fail.

        With ``times``, fail that many calls and then succeed.
        """
        failure = Receipt.failure(command=list(key), error=error, return_code=1, output=output)
        if times is None:
            self.set_response(key, failure)
        else:
            success = Receipt.success(command=list(key), output=self._default_output)
            self.set_response(key, *([failure] * times), success)

    def run(
        self,
        argv: Sequence[str],
        cwd: str | None = None,
        env: Sequence[str] | None = None,
        stream_output: bool = False,
    ) -> Receipt:
        command = [str(arg) for arg in argv]
        self._call_log.append(
            CommandCall(
                command=command,
                cwd=cwd,
                env=list(env) if env is not None else None,
                stream_output=stream_output,
            )
        )

        script = self._lookup(command)
        if script is None or not script.receipts:
            return Receipt.success(
                command=command,
                output=self._default_output,
                metadata={"mock": True},
            )

        template = script.receipts.pop(0) if len(script.receipts) > 1 else script.receipts[0]
        receipt = template.model_copy(update={"command": command, "metadata": {"mock": True}})
        if stream_output and receipt.output:
            self.stdout.write(receipt.output + "\n")
        return receipt

    def reset(self) -> None:
        """Clear call log and scripted responses."""
        self._call_log.clear()
        self._scripts.clear()

    def _lookup(self, command: list[str]) -> _Scripted | None:
        matching = [s for s in self._scripts if _matches(s.key, command)]
        if not matching:
            return None
        return max(matching, key=lambda s: len(s.key))


def _matches(key: Sequence[str], command: list[str]) -> bool:
    if not key or not command or len(key) > len(command):
        return False
    if os.path.basename(command[0]) != key[0] and command[0] != key[0]:
        return False
    return list(command[1 : len(key)]) == list(key[1:])
