#!/usr/bin/env python3
"""
Example: Discover Yeelight devices on the local network.

This example demonstrates how to use the libyeelight discovery service
to find lights and read their current properties.
"""

import asyncio
import logging

from libyeelight import (
    DiscoveryService,
    Light,
    YeelightError,
)


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)

# Show traffic from the library internals
logging.getLogger("yeelight").setLevel(logging.DEBUG)


async def main():
    """Main entry point."""
    print("=" * 60)
    print("Yeelight Device Discovery")
    print("=" * 60)

    discovery = DiscoveryService()

    print("\nSending multicast search...")
    print("Waiting 3 seconds for device responses...\n")

    descriptors = await discovery.discover(timeout=3.0)

    if not descriptors:
        print("No devices found.")
        return

    print(f"Found {len(descriptors)} device(s):\n")

    for descriptor in descriptors:
        print(f"Device: {descriptor.id}")
        print(f"  Location: {descriptor.location}")
        print(f"  Model: {descriptor.model}")
        print(f"  Firmware: {descriptor.firmware_version}")
        print(f"  Supports: {' '.join(sorted(descriptor.support))}")

        try:
            async with Light.from_discovered(descriptor) as light:
                print("  Reading properties...")
                properties = await light.refresh()

                print(f"  Name: {light.name}")
                print(f"  Power: {'ON' if light.is_on else 'OFF'}")
                print(f"  Brightness: {light.brightness}%")
                print(f"  Color mode: {light.color_mode.name if light.color_mode else 'unknown'}")
                print(f"  Raw: {properties}")

        except YeelightError as e:
            print(f"  (Error reading properties: {e})")

        print()

    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
