"""
External process runner for pg_dump / psql

The backup manager only talks to ProcessRunner.run(): an argument list in,
an optional binary stream to feed stdin or to receive stdout, and an exit
code plus stderr out. Tests swap in a fake runner; nothing else in the
package spawns processes.
"""

import asyncio
import logging
import os
import signal
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class ProcessResult:
    returncode: int
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """Runs a command with one piped stream, off the event loop."""

    async def run(
        self,
        args: list[str],
        env: Optional[dict[str, str]] = None,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
        timeout: Optional[float] = None,
    ) -> ProcessResult:
        """
        Args:
            args: Executable and arguments
            env: Full process environment
            stdin: Readable binary stream copied into the process
            stdout: Writable binary stream receiving the process output
            timeout: Seconds before the process is killed
        """
        return await asyncio.to_thread(self._run_sync, args, env, stdin, stdout, timeout)

    @staticmethod
    def _run_sync(args, env, stdin, stdout, timeout) -> ProcessResult:
        logger.debug(f"Running {args[0]} with {len(args) - 1} arguments")
        with tempfile.TemporaryFile() as err:
            proc = subprocess.Popen(
                args,
                env=env,
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE if stdout is not None else subprocess.DEVNULL,
                stderr=err,
                # Own process group, so a kill also reaches children holding the pipes
                start_new_session=os.name == "posix",
            )
            expired = threading.Event()

            def expire():
                expired.set()
                _kill(proc)

            # Armed before pumping: a process stalled mid-stream is killed too
            timer = threading.Timer(timeout, expire) if timeout else None
            if timer is not None:
                timer.daemon = True
                timer.start()
            try:
                if stdin is not None:
                    try:
                        for chunk in iter(lambda: stdin.read(CHUNK_SIZE), b""):
                            proc.stdin.write(chunk)
                    except BrokenPipeError:
                        # Process exited early; its exit code and stderr explain why
                        pass
                    finally:
                        try:
                            proc.stdin.close()
                        except BrokenPipeError:
                            pass
                if stdout is not None:
                    for chunk in iter(lambda: proc.stdout.read(CHUNK_SIZE), b""):
                        stdout.write(chunk)
                returncode = proc.wait()
            except BaseException:
                _kill(proc)
                proc.wait()
                raise
            finally:
                if timer is not None:
                    timer.cancel()
            if expired.is_set():
                logger.warning(f"{args[0]} killed after {timeout}s")
                return ProcessResult(returncode=-1, stderr=f"{args[0]} timed out after {timeout}s")
            err.seek(0)
            return ProcessResult(returncode=returncode, stderr=err.read().decode("utf-8", errors="replace"))


def _kill(proc: subprocess.Popen) -> None:
    if os.name == "posix":
        # The group outlives its leader while a child still runs
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    elif proc.poll() is None:
        proc.kill()
