"""Interactive console prompts."""
from __future__ import annotations

from typing import Callable, Sequence

InputFunc = Callable[[str], str]


def prompt_yes_no(prompt: str, default: bool = True, *, ask: InputFunc = input) -> bool:
    suffix = "[Y/n]" if default else "[y/N]"
    while True:
        response = ask(f"{prompt} {suffix}: ").strip().lower()
        if not response:
            return default
        if response in ("y", "yes"):
            return True
        if response in ("n", "no"):
            return False
        print("Please answer yes or no.")


def prompt_choice(prompt: str, choices: Sequence[str], default: int = 0, *, ask: InputFunc = input) -> int:
    """Show a numbered menu and return the 0-based index of the selection."""
    print(f"\n{prompt}")
    for index, choice in enumerate(choices, 1):
        marker = " (default)" if index - 1 == default else ""
        print(f"  {index}. {choice}{marker}")
    while True:
        response = ask(f"Enter your choice [1-{len(choices)}]: ").strip()
        if not response:
            return default
        try:
            selected = int(response)
        except ValueError:
            print("Please enter a valid number")
            continue
        if 1 <= selected <= len(choices):
            return selected - 1
        print(f"Please enter a number between 1 and {len(choices)}")
