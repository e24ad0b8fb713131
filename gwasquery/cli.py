"""Command-line interface for gwasquery."""

import argparse
import signal
import sys
from pathlib import Path
from typing import List, Optional
import subprocess
import platform

from .app import GwasQueryApp, GwasQueryConfig
from .core.errors import GwasQueryError
from .utils.validation import validate_cli_arguments
from . import __version__

__all__ = ["parser_resolve_path", "create_parser", "main", "is_shutdown_requested"]

_shutdown_requested = False


def _signal_handler(signum: int, frame: object) -> None:
    """Handle signals for graceful shutdown."""
    global _shutdown_requested
    if signum == signal.SIGINT:
        print("\nReceived interrupt signal (Ctrl+C). Shutting down gracefully...", file=sys.stderr)
    elif signum == signal.SIGTERM:
        print("\nReceived termination signal. Shutting down gracefully...", file=sys.stderr)
    else:
        print(f"\nReceived signal {signum}. Shutting down gracefully...", file=sys.stderr)
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """Check if graceful shutdown was requested."""
    return _shutdown_requested


def _get_git_commit() -> str:
    """Return short git commit hash if available, else 'unknown'."""
    try:
        res = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
        )
        return res.stdout.strip() or "unknown"
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def _build_version_string() -> str:
    """Compose version string with build and runtime info."""
    commit = _get_git_commit()
    py = platform.python_version()
    return f"gwasquery {__version__} (commit hash {commit})\nPython {py}"


def parser_resolve_path(path: str) -> Path:
    """Resolve CLI-provided path string to an absolute Path.

    Example:
        >>> parser_resolve_path("ieu-a-2.vcf.gz")
        PosixPath('/absolute/path/to/ieu-a-2.vcf.gz')
    """
    return Path(path).resolve()


def _split_values(values: Optional[List[str]]) -> List[str]:
    """Flatten repeated and comma-separated option values."""
    out: List[str] = []
    for value in values or []:
        out.extend(v.strip() for v in value.split(",") if v.strip())
    return out


def _read_rsid_file(path: Path) -> List[str]:
    with open(path, "r", encoding="utf-8") as fh:
        return [line.split()[0] for line in fh if line.strip() and not line.startswith("#")]


def _add_logging_group(parser: argparse.ArgumentParser) -> None:
    grp_log = parser.add_argument_group("Logging", "Logging verbosity and format")
    grp_log.add_argument(
        "-q",
        "--quiet",
        help="Suppress progress output",
        action="store_true",
        default=False,
    )
    grp_log.add_argument(
        "-L",
        "--log-level",
        help=(
            "Logging level (DEBUG, INFO, WARNING, ERROR); default depends on --quiet"
        ),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
    )
    grp_log.add_argument(
        "-F",
        "--log-format",
        help="Logging format: text or json",
        choices=["text", "json"],
        default="text",
    )


def _add_tools_group(parser: argparse.ArgumentParser) -> None:
    grp_tools = parser.add_argument_group(
        "External tools",
        "Binaries used for accelerated scans and LD computation "
        "(default: $GWASQUERY_BCFTOOLS / $GWASQUERY_PLINK, then PATH)",
    )
    grp_tools.add_argument("--bcftools", help="Path to bcftools", default=None)
    grp_tools.add_argument("--plink", help="Path to plink 1.9", default=None)


def _add_ld_window(group: argparse._ArgumentGroup) -> None:
    group.add_argument(
        "--tag-r2",
        dest="tag_r2",
        help="Minimum r2 between a variant and its proxy",
        default=0.8,
        type=float,
        metavar="R2",
    )
    group.add_argument(
        "--tag-kb",
        dest="tag_kb",
        help="LD window size in kb",
        default=5000,
        type=int,
        metavar="KB",
    )
    group.add_argument(
        "--tag-nsnp",
        dest="tag_nsnp",
        help="LD window size in number of variants",
        default=5000,
        type=int,
        metavar="N",
    )
    group.add_argument(
        "-t",
        "--threads",
        help="Threads for plink and proxy resolution",
        default=1,
        type=int,
    )


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser.

    Returns:
        Configured ArgumentParser with all gwasquery sub-commands

    Example:
        >>> parser = create_parser()
        >>> args = parser.parse_args(["query", "in.vcf.gz", "-p", "5e-8"])
        >>> print(f"{args.command}: p <= {args.pval}")
        query: p <= 5e-08
    """
    parser = argparse.ArgumentParser(
        description=(
            "Query GWAS-VCF summary statistics by region, identifier and "
            "p-value, with optional LD proxies for missing identifiers."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=_build_version_string(),
        help="Show program version, commit hash, and Python version, then exit",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    # query
    p_query = sub.add_parser(
        "query",
        help="Filter records by region, identifier and p-value",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p_query.add_argument(
        "vcf", help="GWAS-VCF file", type=parser_resolve_path, metavar="VCF"
    )
    grp_filter = p_query.add_argument_group(
        "Filters", "Combined filters are ANDed: region, then identifiers, then p-value"
    )
    grp_filter.add_argument(
        "-c",
        "--chrompos",
        action="append",
        help="Region chrom, chrom:pos or chrom:start-end (repeatable, comma-separated)",
        metavar="REGION",
    )
    grp_filter.add_argument(
        "-r",
        "--rsid",
        action="append",
        help="Variant identifier (repeatable, comma-separated)",
        metavar="RSID",
    )
    grp_filter.add_argument(
        "--rsid-file",
        help="File with one identifier per line",
        type=parser_resolve_path,
        default=None,
    )
    grp_filter.add_argument(
        "-p",
        "--pval",
        help="Keep records with p-value at or below this threshold",
        type=float,
        default=None,
    )
    grp_index = p_query.add_argument_group("Indexes", "Prebuilt side indexes")
    grp_index.add_argument(
        "--rsid-index", type=parser_resolve_path, default=None, help="Identifier index"
    )
    grp_index.add_argument(
        "--pval-index", type=parser_resolve_path, default=None, help="Threshold index"
    )
    grp_index.add_argument(
        "--create-index",
        action="store_true",
        default=False,
        help="Create a tabix/CSI index for the VCF when missing",
    )
    grp_ld = p_query.add_argument_group("LD proxies", "Proxy search for identifiers")
    grp_ld.add_argument(
        "--proxies",
        choices=["no", "yes", "only"],
        default="no",
        help="no: direct hits only; yes: proxies for missing identifiers; only: proxies only",
    )
    grp_ld.add_argument(
        "--bfile",
        type=parser_resolve_path,
        default=None,
        help="plink reference panel prefix (.bed/.bim/.fam)",
    )
    grp_ld.add_argument(
        "--ld-db",
        type=parser_resolve_path,
        default=None,
        help="Precomputed tag table built with build-ldref",
    )
    _add_ld_window(grp_ld)
    p_query.add_argument(
        "-o",
        "--output",
        type=parser_resolve_path,
        default=None,
        help="Output TSV (default: stdout)",
    )
    _add_tools_group(p_query)
    _add_logging_group(p_query)

    # index-rsid
    p_rsid = sub.add_parser(
        "index-rsid",
        help="Build an identifier index",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p_rsid.add_argument("vcf", help="GWAS-VCF file", type=parser_resolve_path, metavar="VCF")
    p_rsid.add_argument(
        "index", help="Output index (sqlite)", type=parser_resolve_path, metavar="INDEX"
    )
    _add_logging_group(p_rsid)

    # index-pval
    p_pval = sub.add_parser(
        "index-pval",
        help="Build a threshold index",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p_pval.add_argument("vcf", help="GWAS-VCF file", type=parser_resolve_path, metavar="VCF")
    p_pval.add_argument(
        "index", help="Output index (sqlite)", type=parser_resolve_path, metavar="INDEX"
    )
    p_pval.add_argument(
        "-p",
        "--max-pval",
        dest="max_pval",
        help="Largest p-value stored; looser queries are refused",
        type=float,
        default=0.05,
    )
    _add_logging_group(p_pval)

    # build-ldref
    p_ld = sub.add_parser(
        "build-ldref",
        help="Precompute an LD tag table from a plink panel",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p_ld.add_argument(
        "bfile", help="plink reference panel prefix", type=parser_resolve_path, metavar="BFILE"
    )
    p_ld.add_argument(
        "index", help="Output tag table (sqlite)", type=parser_resolve_path, metavar="LD_DB"
    )
    grp_win = p_ld.add_argument_group("LD window")
    _add_ld_window(grp_win)
    p_ld.set_defaults(tag_r2=0.6)
    _add_tools_group(p_ld)
    _add_logging_group(p_ld)

    return parser


def _build_config(args: argparse.Namespace) -> GwasQueryConfig:
    return GwasQueryConfig(
        vcf=getattr(args, "vcf", None),
        rsid_index=getattr(args, "rsid_index", None),
        pval_index=getattr(args, "pval_index", None),
        ld_bfile=getattr(args, "bfile", None),
        ld_db=getattr(args, "ld_db", None),
        proxies=getattr(args, "proxies", "no"),
        tag_r2=getattr(args, "tag_r2", 0.8),
        tag_kb=getattr(args, "tag_kb", 5000),
        tag_nsnp=getattr(args, "tag_nsnp", 5000),
        threads=getattr(args, "threads", 1),
        bcftools=getattr(args, "bcftools", None),
        plink=getattr(args, "plink", None),
        create_index=getattr(args, "create_index", False),
        verbose=not args.quiet,
        log_level=args.log_level,
        log_format=args.log_format,
        output=getattr(args, "output", None),
        show_progress=not args.quiet,
    )


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point.

    This function:
    1. Parses command line arguments
    2. Validates argument combinations
    3. Creates application configuration
    4. Runs the requested sub-command

    Example:
        >>> # python -m gwasquery.cli index-rsid ieu-a-2.vcf.gz ieu-a-2.rsidx
        >>> # python -m gwasquery.cli query ieu-a-2.vcf.gz -r rs4442317 \\
        >>> #     --proxies yes --bfile ref/EUR --tag-r2 0.6
    """
    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    parser = create_parser()
    args = parser.parse_args(argv)
    if args.command == "query":
        args.chrompos = _split_values(args.chrompos)
        args.rsid = _split_values(args.rsid)
        if args.rsid_file is not None:
            args.rsid.extend(_read_rsid_file(args.rsid_file))

    validate_cli_arguments(args)
    config = _build_config(args)

    app = GwasQueryApp(config, shutdown_checker=is_shutdown_requested)
    try:
        if args.command == "query":
            app.query(args.chrompos, args.rsid, args.pval)
        elif args.command == "index-rsid":
            app.build_rsid_index(args.index)
        elif args.command == "index-pval":
            app.build_pval_index(args.index, args.max_pval)
        elif args.command == "build-ldref":
            app.build_ld_reference(args.bfile, args.index, min_r2=args.tag_r2)
    except KeyboardInterrupt:
        print("\nOperation interrupted by user. Exiting gracefully.", file=sys.stderr)
        sys.exit(1)
    except GwasQueryError as e:
        if _shutdown_requested:
            print(f"\nGraceful shutdown completed: {e}", file=sys.stderr)
            sys.exit(1)
        sys.exit(f"ERROR: {e}")
    except ValueError as e:
        sys.exit(f"ERROR: {e}")


if __name__ == "__main__":
    main()
