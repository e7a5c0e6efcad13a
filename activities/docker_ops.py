"""
Activity: Docker Operations — the container runtime used to build images and
run test commands, driven through the ``docker`` command line.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Protocol

from models.errors import BuildError, ExecFailure, InfrastructureFailure
from models.schemas import ExecResult

log = logging.getLogger(__name__)

DEFAULT_SHELL = ["/bin/bash"]

# In-container `timeout` wrapper: seconds between TERM and KILL, and the
# exit codes it reports when the command ran out of time
KILL_AFTER = 5
TIMEOUT_EXIT_CODES = {124, 137}
# Extra seconds the local docker client waits beyond the in-container bound
CLIENT_GRACE = 30


class Runtime(Protocol):
    """What the pipeline needs from a container runtime."""

    def build_image(self, name: str, context: bytes) -> None: ...

    def start_container(self, image: str, command: list[str]) -> str: ...

    def exec(self, container: str, command: str, timeout: float | None = None) -> ExecResult: ...

    def stop(self, container: str) -> None: ...


class DockerRuntime:
    """Runtime backed by the local ``docker`` binary."""

    def __init__(self, docker_bin: str = "docker", build_timeout: float = 3600,
                 control_timeout: float = 60):
        self.docker_bin = docker_bin
        self.build_timeout = build_timeout
        self.control_timeout = control_timeout

    def build_image(self, name: str, context: bytes) -> None:
        """Build ``name`` from a tar build context fed on stdin."""
        log.info("Building image %s (%d byte context)", name, len(context))
        try:
            result = self._docker("build", "-t", name, "-",
                                  input=context, timeout=self.build_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise BuildError(f"docker build of {name} failed: {e}") from e
        if result.returncode != 0:
            raise BuildError(
                f"docker build of {name} exited with {result.returncode}: "
                f"{_tail(result.stderr or result.stdout)}"
            )
        log.debug("docker build output:\n%s", result.stdout)
        log.info("Image built: %s", name)

    def start_container(self, image: str, command: list[str]) -> str:
        """Start a detached container with a TTY so the shell stays alive."""
        try:
            result = self._docker("run", "-d", "-t", image, *command,
                                  timeout=self.control_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise InfrastructureFailure(f"Could not start container from {image}: {e}") from e
        if result.returncode != 0:
            raise InfrastructureFailure(
                f"Could not start container from {image}: {_tail(result.stderr)}"
            )
        container = result.stdout.strip()
        log.info("Started container %s from %s", container[:12], image)
        return container

    def exec(self, container: str, command: str, timeout: float | None = None) -> ExecResult:
        """
        Run ``command`` through ``/bin/bash -c`` inside the container.

        With a ``timeout`` the command runs under coreutils ``timeout`` inside
        the container, so it is killed there rather than left running behind
        the next command. The local client gets a grace period on top.
        """
        argv = [*DEFAULT_SHELL, "-c", command]
        client_timeout = None
        if timeout is not None:
            argv = ["timeout", "-k", str(KILL_AFTER), f"{timeout:g}", *argv]
            client_timeout = timeout + KILL_AFTER + CLIENT_GRACE
        try:
            result = self._docker("exec", container, *argv, timeout=client_timeout)
        except subprocess.TimeoutExpired as e:
            raise ExecFailure(f"Command timed out after {timeout}s: {command}") from e
        except OSError as e:
            raise InfrastructureFailure(f"Could not run docker exec: {e}") from e
        if timeout is not None and result.returncode in TIMEOUT_EXIT_CODES:
            raise ExecFailure(f"Command timed out after {timeout}s: {command}")
        return ExecResult(result.returncode, result.stdout, result.stderr)

    def stop(self, container: str) -> None:
        """Stop and remove the container."""
        for args in (("stop", "-t", "1", container), ("rm", container)):
            try:
                result = self._docker(*args, timeout=self.control_timeout)
            except (OSError, subprocess.TimeoutExpired) as e:
                raise InfrastructureFailure(f"docker {args[0]} {container[:12]} failed: {e}") from e
            if result.returncode != 0:
                raise InfrastructureFailure(
                    f"docker {args[0]} {container[:12]} failed: {_tail(result.stderr)}"
                )
        log.info("Stopped and removed container %s", container[:12])

    def _docker(self, *args: str, input: bytes | None = None,
                timeout: float | None = None) -> subprocess.CompletedProcess:
        """Run a docker command, returning decoded output."""
        proc = subprocess.run(
            [self.docker_bin, *args],
            input=input,
            capture_output=True,
            timeout=timeout,
        )
        return subprocess.CompletedProcess(
            proc.args,
            proc.returncode,
            proc.stdout.decode(errors="replace"),
            proc.stderr.decode(errors="replace"),
        )


def _tail(text: str, limit: int = 2000) -> str:
    text = text.strip()
    return text if len(text) <= limit else "..." + text[-limit:]
