#!/usr/bin/env python3
"""
Example: Interactive control of a Yeelight device.

This example demonstrates controlling a light:
- Turn on/off and toggle
- Set brightness, colour temperature and colour
- Watch the notifications the light sends on every change

Usage:
    python control_light.py 192.168.1.239
"""

import asyncio
import logging
import sys
from typing import Any, Dict, Optional

from libyeelight import (
    Light,
    Transition,
    ValidationError,
    YeelightError,
)

# Configure logging (quiet by default, set to DEBUG for troubleshooting)
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("control_light")

FADE = Transition.smooth(500)


def print_header(light: Light) -> None:
    """Print the header with light info."""
    print("=" * 60)
    print("  Yeelight Controller")
    print("=" * 60)
    print(f"  Light:       {light.name or 'Unknown'}")
    print(f"  IP:          {light.ip_address}:{light.port}")
    print("-" * 60)
    print(f"  Power:       {'ON' if light.is_on else 'OFF'}")
    print(f"  Brightness:  {light.brightness}%")
    print(f"  Temperature: {light.color_temperature}K")
    print(f"  Color:       {light.rgb}")
    print("=" * 60)


def print_menu() -> None:
    """Print the control menu."""
    print()
    print("  CONTROLS:")
    print("  ---------")
    print("  [1] Turn ON")
    print("  [2] Turn OFF")
    print("  [t] Toggle")
    print("  [3] Set Brightness")
    print("  [4] Set Color Temperature")
    print("  [5] Set RGB Color")
    print()
    print("  [r] Refresh state")
    print("  [q] Quit")
    print()


async def read_line(prompt: str) -> str:
    """Read a line from stdin without blocking the event loop."""
    print(f"  {prompt}: ", end="", flush=True)
    loop = asyncio.get_running_loop()
    line = await loop.run_in_executor(None, sys.stdin.readline)
    return line.strip().lower()


async def read_int(prompt: str) -> Optional[int]:
    """
    Get an integer input from user.

    Returns:
        The value, or None if cancelled or not a number.
    """
    line = await read_line(f"{prompt} or 'c' to cancel")
    if line in ("", "c"):
        return None
    try:
        return int(line, 0)
    except ValueError:
        print("  Error: Invalid number")
        return None


def on_state_change(light: Light, changes: Dict[str, Any]) -> None:
    """Print notifications pushed by the light."""
    print(f"\n  <- {light.ip_address} reported {changes}")


async def handle(light: Light, choice: str) -> bool:
    """
    Run one menu choice.

    Returns:
        False when the user asked to quit.
    """
    if choice == "q":
        return False
    if choice == "1":
        await light.turn_on(FADE)
    elif choice == "2":
        await light.turn_off(FADE)
    elif choice == "t":
        await light.toggle()
    elif choice == "3":
        value = await read_int("Enter brightness (1-100)")
        if value is not None:
            await light.set_bright(value, FADE)
    elif choice == "4":
        value = await read_int("Enter color temperature (1700-6500)")
        if value is not None:
            await light.set_ct_abx(value, FADE)
    elif choice == "5":
        value = await read_int("Enter RGB color (e.g. 0xFF8000)")
        if value is not None:
            await light.set_rgb(value, transition=FADE)
    elif choice == "r":
        await light.refresh()
    return True


async def main() -> int:
    """Main entry point."""
    if len(sys.argv) != 2:
        print(__doc__)
        return 1

    async with Light(sys.argv[1]) as light:
        light.add_state_callback(on_state_change)
        await light.refresh()

        running = True
        while running:
            print_header(light)
            print_menu()
            choice = await read_line("Select")
            try:
                running = await handle(light, choice)
            except ValidationError as e:
                print(f"  Invalid value: {e}")
            except YeelightError as e:
                logger.debug("Command failed", exc_info=True)
                print(f"  Command failed: {e}")

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
