# vmpkg/cli.py
"""
vmpkg CLI

- argparse front end; global flags are accepted before or after the command
- every subcommand delegates to manager.PackageManager
- rich renders tables, plans and status lines; destructive commands ask for
  confirmation unless --yes
- main() returns the exit code carried by the VmpkgError that ended the run
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm
from rich.rule import Rule
from rich.table import Table

from vmpkg import __version__
from vmpkg.config import Settings, load
from vmpkg.errors import OperationCancelled, VmpkgError
from vmpkg.logging import configure_logging, get_logger, shutdown_logging
from vmpkg.manager import PackageManager

logger = get_logger("cli")

console = Console()
err_console = Console(stderr=True)


# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {escape(msg)}")


def print_warn(msg: str):
    err_console.print(f"[bold yellow]![/] {escape(msg)}")


def print_err(msg: str):
    err_console.print(f"[bold red]✖[/] {escape(msg)}")


def print_info(msg: str):
    console.print(f"[cyan]{escape(msg)}[/cyan]")


def print_title(msg: str):
    console.print(Rule(f"[bold blue]▶ {escape(msg)}[/]", align="left"))


def print_fields(rows: List[tuple]):
    for label, value in rows:
        console.print(f"{label + ':':<13}{escape(str(value))}", highlight=False)
    console.print()


def confirm(msg: str, assume_yes: bool) -> None:
    if assume_yes:
        console.print(f"vmpkg: {escape(msg)} [y/N]: y (auto)", highlight=False)
        return
    if not Confirm.ask(f"vmpkg: {escape(msg)}", default=False, console=console):
        raise OperationCancelled("Operation cancelled.")


# -----------------------
# Commands
# -----------------------
class VmpkgCLI:
    def __init__(self, settings: Settings, manager: Optional[PackageManager] = None):
        self.settings = settings
        self.manager = manager or PackageManager(settings)

    def init(self, args) -> int:
        print_title("Initializing vmpkg")
        on_path = self.manager.init()
        print_ok(f"Initialized vmpkg at: {self.settings.root}")
        if not on_path:
            console.print()
            console.print("[yellow]NOTE:[/] Add this to your shell config (e.g. ~/.bashrc or ~/.zshrc):")
            console.print(f'  export PATH="{escape(str(self.settings.bin_dir))}:$PATH"', highlight=False)
        return 0

    def register(self, args) -> int:
        desc = " ".join(args.description) if args.description else None
        print_title("Registering package")
        print_fields([
            ("Name", args.name),
            ("Version", args.version),
            ("URL", args.url),
            ("Description", desc or "no description"),
        ])
        confirm("Add/Update this entry in registry?", self.settings.assume_yes)
        self.manager.register(args.name, args.version, args.url, desc)
        if not self.settings.dry_run:
            print_ok(f"Registry updated: {self.settings.registry_path}")
        return 0

    def install(self, args, reinstall: bool = False) -> int:
        plan = self.manager.plan_install(args.name, reinstall=reinstall)
        print_title("Install plan")
        print_fields([
            ("Name", plan.name),
            ("Version", plan.version),
            ("URL", plan.entry.url),
            ("Install dir", plan.install_dir),
            ("Archive", plan.archive),
            ("Bin dir", self.settings.bin_dir),
        ])
        if not plan.skip:
            confirm("Proceed with installation?", self.settings.assume_yes)
        result = self.manager.install(args.name, reinstall=reinstall)
        if result.skipped or result.dry_run:
            return 0
        print_ok(f"Package '{result.name}' installed.")
        console.print(Rule())
        if result.bin_links:
            console.print("Created symlinks:")
            for link in result.bin_links:
                console.print(f"  {escape(str(link))}", highlight=False)
        else:
            console.print("No executables linked (no bin/ directory found).")
        console.print(Rule())
        return 0

    def reinstall(self, args) -> int:
        return self.install(args, reinstall=True)

    def remove(self, args) -> int:
        plan = self.manager.plan_remove(args.name)
        print_title("Removal plan")
        print_fields([
            ("Package", plan.name),
            ("Install dir", plan.install_dir or "<unknown>"),
            ("Manifest", plan.manifest_path),
            ("Bin links", ";".join(plan.bin_links) or "<none>"),
        ])
        confirm("Proceed with removal?", self.settings.assume_yes)
        result = self.manager.remove(args.name)
        if result.kept_dir:
            print_warn(f"Install dir {result.kept_dir} is outside {self.settings.pkgs_dir} and was left in place.")
        if not result.dry_run:
            print_ok(f"Package '{result.name}' removed.")
        return 0

    def list(self, args) -> int:
        print_title("Installed packages")
        rows = list(self.manager.list_installed())
        if not rows:
            console.print("  (none)")
            return 0
        table = Table(show_header=True, header_style="bold", box=None)
        table.add_column("Name")
        table.add_column("Version")
        for name, version in rows:
            table.add_row(escape(name), escape(version))
        console.print(table)
        return 0

    def search(self, args) -> int:
        print_title("Search registry")
        console.print(f"Registry file: {escape(str(self.settings.registry_path))}", highlight=False)
        console.print()
        matches = self.manager.search(args.pattern)
        if not matches:
            console.print("No matches.")
            return 0
        table = Table(show_header=True, header_style="bold", box=None)
        for col in ("Name", "Version", "URL", "Description"):
            table.add_column(col, overflow="fold")
        for e in matches:
            table.add_row(escape(e.name), escape(e.version), escape(e.url), escape(e.description))
        console.print(table)
        return 0

    def show(self, args) -> int:
        entry = self.manager.show(args.name)
        print_title("Package details")
        print_fields([
            ("Name", entry.name),
            ("Version", entry.version),
            ("URL", entry.url),
            ("Description", entry.description),
        ])
        return 0

    def clean(self, args) -> int:
        print_title("Clean cache")
        console.print(f"Cache directory: {escape(str(self.settings.cache_dir))}", highlight=False)
        console.print()
        confirm("Remove all cached package archives?", self.settings.assume_yes)
        removed = self.manager.clean()
        if not self.settings.dry_run:
            print_ok(f"Cache cleaned ({len(removed)} file(s)).")
        return 0

    def doctor(self, args) -> int:
        print_title("vmpkg doctor")
        print_fields([
            ("Root", self.settings.root),
            ("Registry", self.settings.registry_path),
            ("DB", self.settings.db_dir),
            ("Packages", self.settings.pkgs_dir),
            ("Cache", self.settings.cache_dir),
            ("Bin dir", self.settings.bin_dir),
        ])
        for check in self.manager.doctor():
            detail = f" ({check.detail})" if check.detail else ""
            if check.ok:
                print_ok(f"{check.name}{detail}")
            else:
                print_warn(f"{check.name}{detail}")
        return 0


# -----------------------
# Argparse wiring
# -----------------------
def _global_flags() -> argparse.ArgumentParser:
    # SUPPRESS keeps a flag given before the command from being reset by the subparser
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-y", "--yes", "--assume-yes", dest="assume_yes", action="store_true", default=argparse.SUPPRESS, help="Assume yes for all prompts")
    common.add_argument("-n", "--dry-run", dest="dry_run", action="store_true", default=argparse.SUPPRESS, help="Preview only, no changes")
    common.add_argument("--no-color", dest="no_color", action="store_true", default=argparse.SUPPRESS, help="Disable colored output")
    common.add_argument("--debug", dest="debug", action="store_true", default=argparse.SUPPRESS, help="Verbose debug logging")
    common.add_argument("-q", "--quiet", dest="quiet", action="store_true", default=argparse.SUPPRESS, help="Hide info logs")
    common.add_argument("--root", dest="root", default=argparse.SUPPRESS, help="Root dir (default: ~/.vmpkg)")
    common.add_argument("--bin-dir", dest="bin_dir", default=argparse.SUPPRESS, help="Bin dir (default: ~/.local/bin)")
    common.add_argument("--config", dest="config", default=argparse.SUPPRESS, help="Config file (YAML)")
    return common


def make_parser() -> argparse.ArgumentParser:
    common = _global_flags()
    ap = argparse.ArgumentParser(prog="vmpkg", description="vmpkg - very minimal user-space package manager", parents=[common])
    ap.add_argument("-v", "--version", action="version", version=f"vmpkg {__version__}")
    ap.set_defaults(assume_yes=False, dry_run=False, no_color=False, debug=False, quiet=False, root=None, bin_dir=None, config=None)
    sub = ap.add_subparsers(dest="cmd", metavar="<command>")

    sub.add_parser("init", parents=[common], help="Initialize vmpkg directories")

    p_register = sub.add_parser("register", parents=[common], help="Register package in local registry")
    p_register.add_argument("name")
    p_register.add_argument("version")
    p_register.add_argument("url")
    p_register.add_argument("description", nargs="*")

    p_install = sub.add_parser("install", parents=[common], help="Install package from registry")
    p_install.add_argument("name")

    p_reinstall = sub.add_parser("reinstall", parents=[common], help="Force reinstall package")
    p_reinstall.add_argument("name")

    p_remove = sub.add_parser("remove", parents=[common], help="Remove installed package")
    p_remove.add_argument("name")

    sub.add_parser("list", parents=[common], help="List installed packages")

    p_search = sub.add_parser("search", parents=[common], help="Search registry entries")
    p_search.add_argument("pattern")

    p_show = sub.add_parser("show", parents=[common], help="Show registry entry details")
    p_show.add_argument("name")

    sub.add_parser("clean", parents=[common], help="Clean cache")
    sub.add_parser("doctor", parents=[common], help="Diagnose environment")
    return ap


def settings_from_args(args) -> Settings:
    settings = Settings.from_config(load(args.config))
    return settings.with_overrides(
        root=args.root,
        bin_dir=args.bin_dir,
        assume_yes=True if args.assume_yes else None,
        dry_run=True if args.dry_run else None,
        debug=True if args.debug else None,
        quiet=True if args.quiet else None,
        color=False if args.no_color else None,
    )


def main(argv: Optional[List[str]] = None) -> int:
    global console, err_console
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 0

    settings = settings_from_args(args)
    console = Console(no_color=not settings.color)
    err_console = Console(stderr=True, no_color=not settings.color)
    configure_logging(settings)

    cli = VmpkgCLI(settings)
    handler = getattr(cli, args.cmd)
    try:
        return handler(args)
    except VmpkgError as e:
        print_err(str(e))
        return e.exit_code
    except OSError as e:
        logger.debug("command %s failed", args.cmd, exc_info=True)
        print_err(f"Command failed: {e}")
        return 1
    except KeyboardInterrupt:
        print_err("Operation interrupted by user.")
        return 130
    finally:
        shutdown_logging()


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
