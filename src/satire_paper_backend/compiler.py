"""
pdflatex wrapper used to turn generated LaTeX into a PDF.

The compiler runs as an asyncio subprocess so a long compilation never blocks
the event loop. A failed first attempt gets one deterministic fixup (see
:func:`latex.apply_package_fixup`) and exactly one retry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List
from uuid import uuid4

from .errors import CompilationError
from .latex import apply_package_fixup

logger = logging.getLogger(__name__)

# Only the end of the pdflatex log is useful in an error message.
LOG_TAIL_CHARS = 800


@dataclass
class CompileAttempt:
    returncode: int
    output: str


class LatexCompiler:
    """
    Compile a LaTeX document in a caller-provided working directory.

    Attributes:
        command: pdflatex executable name or path
        reference_pass: Run a second pass after a clean first pass so that
            cross-references and citations resolve
    """

    def __init__(self, command: str = "pdflatex", reference_pass: bool = True) -> None:
        self.command = command
        self.reference_pass = reference_pass

    def build_command(self, tex_path: Path, work_dir: Path) -> List[str]:
        return [
            self.command,
            "-interaction=nonstopmode",
            "-halt-on-error",
            f"-output-directory={work_dir}",
            str(tex_path),
        ]

    async def _run_compiler(self, tex_path: Path, work_dir: Path) -> CompileAttempt:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(tex_path, work_dir),
                cwd=str(work_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            return CompileAttempt(returncode=127, output=f"{self.command} executable not found")

        stdout, _ = await process.communicate()
        return CompileAttempt(
            returncode=process.returncode if process.returncode is not None else -1,
            output=stdout.decode("utf-8", errors="replace") if stdout else "",
        )

    async def compile(self, source: str, work_dir: Path) -> Path:
        """
        Compile ``source`` and return the path of the produced PDF.

        Args:
            source: Complete LaTeX document
            work_dir: Job-scoped directory; all compiler output stays inside it

        Returns:
            Path to the PDF inside ``work_dir``

        Raises:
            CompilationError: If both the first attempt and the fixup retry
                fail, or the PDF is missing after the final attempt
        """
        stem = uuid4().hex
        tex_path = work_dir / f"{stem}.tex"
        pdf_path = work_dir / f"{stem}.pdf"
        tex_path.write_text(source, encoding="utf-8")

        logger.info(f"Running {self.command} attempt 1 for {stem}")
        first = await self._run_compiler(tex_path, work_dir)
        attempts = 1

        if first.returncode != 0 or not pdf_path.exists():
            logger.warning(f"LaTeX compilation failed on attempt 1 for {stem}: {_tail(first.output)}")
            # A failed pass can leave a partial PDF behind
            pdf_path.unlink(missing_ok=True)
            tex_path.write_text(apply_package_fixup(source), encoding="utf-8")
            logger.info(f"Running {self.command} attempt 2 for {stem} after fixup")
            final = await self._run_compiler(tex_path, work_dir)
            attempts = 2
        elif self.reference_pass:
            logger.info(f"Running {self.command} reference pass for {stem}")
            final = await self._run_compiler(tex_path, work_dir)
            attempts = 2
        else:
            final = first

        if final.returncode != 0:
            logger.error(f"LaTeX compilation failed for {stem}: {_tail(final.output)}")
            raise CompilationError(
                f"Failed to compile LaTeX document (exit code {final.returncode}): {_tail(final.output)}",
                attempts=attempts,
            )

        # pdflatex can exit cleanly without writing a PDF
        if not pdf_path.exists():
            logger.error(f"PDF file was not created despite successful compilation for {stem}")
            raise CompilationError("PDF file was not created despite successful compilation", attempts=attempts)

        return pdf_path


def _tail(output: str) -> str:
    output = output.strip()
    if len(output) <= LOG_TAIL_CHARS:
        return output
    return output[-LOG_TAIL_CHARS:]
