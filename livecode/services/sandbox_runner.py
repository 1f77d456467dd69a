"""Run one snapshot of user code in a throwaway Docker container.

Each call spawns ``docker run --rm -i`` with tight limits (memory, CPU,
pids, no network, read-only root with an in-memory ``/tmp``) and feeds the
source on stdin to ``python -u -``. Results come back as tagged outcome
values; nothing here raises across the worker boundary.
"""
from __future__ import annotations

import logging
import subprocess
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Union

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGE = "python"
# docker run exits 125 when the daemon could not create the container
DOCKER_ENGINE_ERROR = 125
MAX_OUTPUT_SIZE = 1024 * 100


@dataclass(frozen=True)
class Success:
    stdout: str
    stderr: str
    elapsed_ms: int


@dataclass(frozen=True)
class RuntimeFailure:
    stderr: str
    stdout: str
    elapsed_ms: int
    exit_code: int


@dataclass(frozen=True)
class Timeout:
    partial_stderr: str
    partial_stdout: str
    elapsed_ms: int


@dataclass(frozen=True)
class InfrastructureFailure:
    message: str


@dataclass(frozen=True)
class UnsupportedLanguage:
    language: str

    @property
    def message(self) -> str:
        return f"Unsupported language: {self.language}"


SandboxOutcome = Union[Success, RuntimeFailure, Timeout, InfrastructureFailure, UnsupportedLanguage]


def truncate_output(text: str | None, limit: int = MAX_OUTPUT_SIZE, label: str = "Output") -> str:
    text = text or ""
    if len(text) <= limit:
        return text
    logger.warning(f"{label} truncated from {len(text)} to {limit} bytes")
    return text[:limit] + f"\n... [{label} truncated - exceeded {limit // 1024}KB limit]"


class SandboxRunner:
    def __init__(
        self,
        *,
        docker_binary: str = "docker",
        image: str = "python:3.12-slim",
        timeout_seconds: float = 10,
        memory_limit: str = "128m",
        cpus: str = "0.5",
        pids_limit: int = 50,
        tmpfs_size: str = "16m",
        max_output_size: int = MAX_OUTPUT_SIZE,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        kill_runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.docker_binary = docker_binary
        self.image = image
        self.timeout_seconds = timeout_seconds
        self.memory_limit = memory_limit
        self.cpus = cpus
        self.pids_limit = pids_limit
        self.tmpfs_size = tmpfs_size
        self.max_output_size = max_output_size
        self._popen = popen
        self._kill_runner = kill_runner
        self._clock = clock

    @staticmethod
    def supports(language: str | None) -> bool:
        return (language or "").strip().lower() == SUPPORTED_LANGUAGE

    def build_command(self, container_name: str) -> list[str]:
        return [
            self.docker_binary, "run", "--rm", "-i",
            "--name", container_name,
            f"--memory={self.memory_limit}",
            f"--memory-swap={self.memory_limit}",
            f"--cpus={self.cpus}",
            f"--pids-limit={self.pids_limit}",
            "--network=none",
            "--read-only",
            "--tmpfs", f"/tmp:rw,size={self.tmpfs_size}",
            "--security-opt", "no-new-privileges",
            self.image,
            "python", "-u", "-",
        ]

    def run(self, code_snapshot: str, language: str) -> SandboxOutcome:
        if not self.supports(language):
            logger.error(f"Unsupported language: {language}")
            return UnsupportedLanguage(language)

        container_name = f"livecode-{uuid.uuid4().hex}"
        command = self.build_command(container_name)
        logger.info(f"Starting sandbox {container_name} (timeout: {self.timeout_seconds}s)")

        start = self._clock()
        try:
            process = self._popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            logger.error(f"Could not start sandbox {container_name}: {exc}")
            return InfrastructureFailure(f"Sandbox runtime unavailable: {exc}")

        try:
            stdout, stderr = process.communicate(input=code_snapshot, timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            self._terminate(process, container_name)
            stdout, stderr = process.communicate()
            elapsed_ms = self._elapsed_ms(start)
            logger.warning(f"Sandbox {container_name} timed out after {elapsed_ms}ms")
            message = f"Execution timed out after {self.timeout_seconds} seconds.\n"
            return Timeout(
                partial_stderr=message + self._truncate(stderr, "Error output"),
                partial_stdout=self._truncate(stdout, "Output"),
                elapsed_ms=elapsed_ms,
            )

        elapsed_ms = self._elapsed_ms(start)
        stdout = self._truncate(stdout, "Output")
        stderr = self._truncate(stderr, "Error output")

        if process.returncode == 0:
            logger.info(f"Sandbox {container_name} completed in {elapsed_ms}ms")
            return Success(stdout=stdout, stderr=stderr, elapsed_ms=elapsed_ms)
        if process.returncode == DOCKER_ENGINE_ERROR:
            logger.error(f"Docker could not create sandbox {container_name}: {stderr.strip()}")
            return InfrastructureFailure(stderr.strip() or "Docker failed to create the sandbox container.")

        logger.warning(f"Sandbox {container_name} exited with code {process.returncode}")
        return RuntimeFailure(
            stderr=stderr or "Container failed to start/run.",
            stdout=stdout,
            elapsed_ms=elapsed_ms,
            exit_code=process.returncode,
        )

    def _terminate(self, process, container_name: str) -> None:
        # killing the docker client alone leaves the container running
        try:
            self._kill_runner(
                [self.docker_binary, "kill", container_name],
                capture_output=True,
                text=True,
                timeout=10,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error(f"docker kill {container_name} failed: {exc}")
        process.kill()

    def _elapsed_ms(self, start: float) -> int:
        return max(1, int(round((self._clock() - start) * 1000)))

    def _truncate(self, text, label):
        return truncate_output(text, self.max_output_size, label)
