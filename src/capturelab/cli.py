#!/usr/bin/env python3
"""
capturelab-devices: print the unified audio device catalog.
"""

import argparse
import json
import logging
import sys

from .devices import DeviceCatalog, KINDS, load_backends

logger = logging.getLogger(__name__)


def build_catalog(prefer_native: bool = True) -> DeviceCatalog:
    native, browser = load_backends()
    return DeviceCatalog(native, browser, prefer_native=prefer_native)


def print_devices(catalog: DeviceCatalog, kinds, as_json: bool = False):
    devices = catalog.enumerate()
    if as_json:
        print(json.dumps({k: [d.to_dict() for d in devices[k]] for k in kinds}, indent=2))
        return
    for kind in kinds:
        print(f"{kind.title()} devices:")
        entries = catalog.list_for_display(kind)
        if not entries:
            print("  (none)")
        for entry in entries:
            print(f"  {entry['value']:<40} {entry['label']} [{entry['info']}]")


def main(argv=None, catalog: DeviceCatalog = None):
    parser = argparse.ArgumentParser(description="List audio devices known to capturelab")
    parser.add_argument("-k", "--kind", choices=KINDS, help="Only list input or output devices")
    parser.add_argument("-b", "--best", action="store_true", help="Print only the best device of each kind")
    parser.add_argument("-c", "--channels", type=int, help="Preferred channel count for --best")
    parser.add_argument("-r", "--sample-rate", type=int, help="Preferred sample rate for --best")
    parser.add_argument("--browser-first", action="store_true",
                        help="Keep browser devices separate instead of merging them into native ones")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    kinds = [args.kind] if args.kind else list(KINDS)

    try:
        if catalog is None:
            catalog = build_catalog(prefer_native=not args.browser_first)
        if not args.best:
            print_devices(catalog, kinds, args.json)
            return 0

        catalog.enumerate()
        best = {}
        for kind in kinds:
            device = catalog.find_best(kind, preferred_channels=args.channels,
                                       preferred_sample_rate=args.sample_rate)
            best[kind] = device.to_dict() if device else None
            if not args.json:
                print(f"{kind}: {device.name + ' (' + device.device_id + ')' if device else 'none'}")
        if args.json:
            print(json.dumps(best, indent=2))
    except Exception as e:
        logger.error(f"Error listing devices: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
