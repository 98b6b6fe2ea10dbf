import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from appdeck.appstore.errors import EngineError
from appdeck.config.settings import Settings, config

logger = logging.getLogger(__name__)

TAIL_LINES = 40

# Called with (line, is_stderr); may return an awaitable.
LineCallback = Callable[[str, bool], Any]


@dataclass
class CommandResult:
    cmd: List[str]
    code: int
    stdout: str = ""
    stderr: str = ""
    stdout_tail: List[str] = field(default_factory=list)
    stderr_tail: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.code == 0

    @property
    def signal(self) -> Optional[int]:
        return -self.code if self.code < 0 else None


class ComposeCLI:
    """Runs ``docker compose`` project commands as asyncio subprocesses."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or config
        self.binary = self.settings.docker_binary

    def compose_command(
        self,
        project: str,
        compose_file: Optional[str],
        *args: str,
    ) -> List[str]:
        cmd = [self.binary, "compose", "--project-name", project]
        if compose_file:
            cmd.extend(["-f", compose_file])
        cmd.extend(args)
        return cmd

    async def run(
        self,
        cmd: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Run a command to completion, capturing both streams."""
        logger.debug("compose:run cmd=%s cwd=%s", " ".join(cmd), cwd)
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        return CommandResult(
            cmd=list(cmd),
            code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def stream(
        self,
        cmd: Sequence[str],
        on_line: LineCallback,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Run a long command, handing every non-blank line to ``on_line``.

        Only the last ``TAIL_LINES`` lines of each stream are retained.
        """
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_tail: deque = deque(maxlen=TAIL_LINES)
        stderr_tail: deque = deque(maxlen=TAIL_LINES)

        async def read_stream(stream, is_error, tail):
            while True:
                line = await stream.readline()
                if not line:
                    break
                decoded_line = line.decode("utf-8", errors="replace").strip()
                if not decoded_line:
                    continue
                tail.append(decoded_line)
                result = on_line(decoded_line, is_error)
                if inspect.isawaitable(result):
                    await result

        # Run stdout and stderr readers concurrently
        await asyncio.gather(
            read_stream(process.stdout, False, stdout_tail),
            read_stream(process.stderr, True, stderr_tail),
        )
        code = await process.wait()
        return CommandResult(
            cmd=list(cmd),
            code=code,
            stdout="\n".join(stdout_tail),
            stderr="\n".join(stderr_tail),
            stdout_tail=list(stdout_tail),
            stderr_tail=list(stderr_tail),
        )

    async def _checked(
        self,
        stage: str,
        message: str,
        cmd: List[str],
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
    ) -> CommandResult:
        try:
            result = await self.run(cmd, cwd=cwd, env=env)
        except OSError as exc:
            raise EngineError(stage, f"{message}: {exc}", cmd=cmd) from exc
        if not result.ok:
            raise EngineError(
                stage,
                message,
                cmd=cmd,
                code=result.code,
                signal=result.signal,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    async def pull(
        self,
        app_dir: str,
        project: str,
        compose_file: str,
        env: Optional[Dict[str, str]],
        on_line: LineCallback,
    ) -> CommandResult:
        cmd = self.compose_command(project, compose_file, "pull")
        try:
            result = await self.stream(cmd, on_line, cwd=app_dir, env=env)
        except OSError as exc:
            raise EngineError(
                "compose:pull", "docker compose pull failed to start", cmd=cmd, stderr=str(exc)
            ) from exc
        if not result.ok:
            raise EngineError(
                "compose:pull",
                f"docker compose pull exited with code {result.code}",
                cmd=cmd,
                code=result.code,
                signal=result.signal,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    async def up(
        self,
        app_dir: str,
        project: str,
        compose_file: str,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        cmd = self.compose_command(project, compose_file, "up", "-d")
        return await self._checked(
            "compose:up", "Failed to start Docker services", cmd, app_dir, env
        )

    async def down(
        self,
        app_dir: str,
        project: str,
        compose_file: Optional[str] = None,
        remove_volumes: bool = False,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        args = ["down"]
        if remove_volumes:
            args.extend(["-v", "--remove-orphans"])
        cmd = self.compose_command(project, compose_file, *args)
        return await self._checked(
            "compose:down", "Failed to tear down Docker services", cmd, app_dir, env
        )

    async def action(
        self,
        app_dir: str,
        project: str,
        compose_file: str,
        action: str,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        cmd = self.compose_command(project, compose_file, action)
        return await self._checked(
            f"compose:{action}", f"docker compose {action} failed", cmd, app_dir, env
        )

    async def ps_names(
        self,
        app_dir: str,
        project: str,
        compose_file: Optional[str] = None,
    ) -> List[str]:
        """Container names of a project; empty when the query fails."""
        cmd = self.compose_command(project, compose_file, "ps", "--format", "{{.Names}}")
        try:
            result = await self.run(cmd, cwd=app_dir)
        except OSError as exc:
            logger.warning("compose:ps:failed project=%s error=%s", project, exc)
            return []
        if not result.ok:
            logger.warning(
                "compose:ps:failed project=%s code=%s stderr=%s",
                project,
                result.code,
                result.stderr.strip()[:200],
            )
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]
