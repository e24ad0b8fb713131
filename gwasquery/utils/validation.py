"""Input validation utilities."""

import sys
import argparse

__all__ = ["validate_cli_arguments"]


def validate_cli_arguments(args: argparse.Namespace) -> None:
    """Validate CLI argument combinations and constraints.

    Args:
        args: Parsed command line arguments
    """
    command = getattr(args, "command", None)

    # p-values live in (0, 1]
    for name, flag in (("pval", "-p"), ("max_pval", "-p")):
        value = getattr(args, name, None)
        if value is not None and not (0.0 < value <= 1.0):
            sys.exit(f"{flag} (p-value) must be in (0, 1]")

    if getattr(args, "tag_r2", None) is not None and not (0.0 <= args.tag_r2 <= 1.0):
        sys.exit("--tag-r2 must be between 0.0 and 1.0")

    if getattr(args, "threads", 1) < 1:
        sys.exit("-t (threads) must be >= 1")

    for name, flag in (("tag_kb", "--tag-kb"), ("tag_nsnp", "--tag-nsnp")):
        if getattr(args, name, 1) < 1:
            sys.exit(f"{flag} must be >= 1")

    if command == "query":
        if not (args.chrompos or args.rsid or args.pval is not None):
            sys.exit("query needs at least one of -c, -r or -p")
        if args.proxies != "no":
            if not args.rsid:
                sys.exit(f"--proxies {args.proxies} needs identifiers (-r)")
            if args.bfile is None and args.ld_db is None:
                sys.exit(
                    f"--proxies {args.proxies} needs an LD reference "
                    "(--bfile or --ld-db)"
                )
