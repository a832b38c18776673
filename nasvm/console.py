"""Terminal output helpers and confirmation prompts."""

import sys
from typing import Optional

RED = '\033[0;31m'
GREEN = '\033[0;32m'
YELLOW = '\033[1;33m'
BLUE = '\033[0;34m'
CYAN = '\033[0;36m'
BOLD = '\033[1m'
NC = '\033[0m'


def echo(text: str = "", stream=None) -> None:
    print(text, file=stream or sys.stdout)


def print_header(title: str) -> None:
    rule = f"{BLUE}{BOLD}{'=' * 40}{NC}"
    echo()
    echo(rule)
    echo(f"{BLUE}{BOLD}  {title}{NC}")
    echo(rule)
    echo()


def print_info(message: str) -> None:
    echo(f"{CYAN}[INFO]{NC} {message}")


def print_success(message: str) -> None:
    echo(f"{GREEN}[OK]{NC} {message}")


def print_warning(message: str) -> None:
    echo(f"{YELLOW}[WARNING]{NC} {message}")


def print_error(message: str) -> None:
    echo(f"{RED}[ERROR]{NC} {message}")


def print_bold(message: str) -> None:
    echo(f"{BOLD}{message}{NC}")


def ask(prompt: str) -> Optional[str]:
    """Read one line, None on end of input."""
    try:
        return input(f"{CYAN}{prompt}{NC}").strip()
    except EOFError:
        return None


def confirm(prompt: str, default: bool = False) -> bool:
    """
    Yes/no prompt. Only an explicit answer flips the default.

    Args:
        prompt: Question to show
        default: Answer for an empty reply
    """
    suffix = "[Y/n]" if default else "[y/N]"
    try:
        response = input(f"{YELLOW}{prompt} {suffix}: {NC}").strip()
    except EOFError:
        return default
    if default:
        return response.lower() != 'n'
    return response.lower() == 'y'


def format_bytes(size: Optional[int]) -> str:
    """Human readable size, ``du -h`` style."""
    if size is None:
        return "?"
    value = float(size)
    for unit in ('B', 'K', 'M', 'G', 'T'):
        if value < 1024 or unit == 'T':
            if unit == 'B':
                return f"{int(value)}B"
            return f"{value:.1f}{unit}"
        value /= 1024
