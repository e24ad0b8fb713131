"""Paths to external binaries, capability detection and subprocess calls."""

import logging
import os
import platform
import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..core.errors import DelegationError

__all__ = ["ToolPaths", "Capabilities", "detect_capabilities", "run_tool"]

BCFTOOLS_ENV = "GWASQUERY_BCFTOOLS"
PLINK_ENV = "GWASQUERY_PLINK"


@dataclass(frozen=True)
class ToolPaths:
    """Locations of the external collaborators.

    Attributes:
        bcftools: bcftools executable used as the accelerated scan path
        plink: plink 1.9 executable used to compute pairwise LD
    """

    bcftools: Optional[str] = None
    plink: Optional[str] = None

    @classmethod
    def discover(
        cls,
        bcftools: Optional[str] = None,
        plink: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "ToolPaths":
        """Resolve explicit paths, then environment overrides, then PATH.

        An explicit or environment path that does not resolve is reported
        with a warning and the tool is treated as absent.
        """
        return cls(
            bcftools=_resolve(bcftools, BCFTOOLS_ENV, "bcftools", logger),
            plink=_resolve(plink, PLINK_ENV, "plink", logger),
        )


def _resolve(
    explicit: Optional[str],
    env_var: str,
    binary: str,
    logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    candidate = explicit or os.environ.get(env_var)
    if not candidate:
        return shutil.which(binary)
    found = shutil.which(candidate) or (candidate if os.path.isfile(candidate) else None)
    if found is None:
        logger = logger or logging.getLogger(__name__)
        source = "explicit path" if explicit else env_var
        logger.warning(f"{binary} not found at {candidate} ({source}); continuing without it")
    return found


@dataclass(frozen=True)
class Capabilities:
    """What the runtime offers beyond the pure in-memory paths.

    Attributes:
        accelerator: bcftools can be used for identifier/threshold scans
        correlation: plink can be used to compute LD
        system: Operating system name the detection ran on
    """

    accelerator: bool = False
    correlation: bool = False
    system: str = ""


def detect_capabilities(tools: ToolPaths, system: Optional[str] = None) -> Capabilities:
    """Derive capabilities from configured tools and the platform.

    bcftools ``-i 'ID=@file'`` filtering is not usable on Windows builds, so
    the accelerator is reported unavailable there.

    Example:
        >>> detect_capabilities(ToolPaths(bcftools="/usr/bin/bcftools"), "Linux")
        Capabilities(accelerator=True, correlation=False, system='Linux')
    """
    system = system or platform.system()
    return Capabilities(
        accelerator=tools.bcftools is not None and system != "Windows",
        correlation=tools.plink is not None,
        system=system,
    )


def run_tool(
    cmd: Sequence[str], logger: Optional[logging.Logger] = None
) -> subprocess.CompletedProcess:
    """Run an external tool to completion, raising DelegationError on failure."""
    args: List[str] = [str(c) for c in cmd]
    if logger and logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Running: {' '.join(args)}")
    try:
        res = subprocess.run(
            args, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True
        )
    except FileNotFoundError:
        msg = f"{args[0]} not found; check the configured tool path"
        if logger:
            logger.error(msg)
        raise DelegationError(msg)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        if logger:
            logger.error(f"{os.path.basename(args[0])} failed: {stderr}")
        raise DelegationError(
            f"{os.path.basename(args[0])} exited with code {e.returncode}: {stderr}"
        )
    if logger and logger.isEnabledFor(logging.DEBUG) and res.stderr:
        logger.debug(f"{os.path.basename(args[0])} stderr: {res.stderr.strip()}")
    return res
