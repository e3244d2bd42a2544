#!/usr/bin/env python3

"""
Scene doctor: inspect and repair Home Assistant scenes out of band.

Uses the same settings (HA_URL/HA_TOKEN or ~/.config/ha-mcp-server/config.json)
and the same local backup as the MCP server.

Usage examples:
  # List scenes with mode and backup status
  python scene_doctor.py --list

  # Dry-run reconciliation of every scene, or one scene
  python scene_doctor.py --diagnose
  python scene_doctor.py --diagnose scene.evening_mood

  # Write the reconciled configuration back
  python scene_doctor.py --repair evening_mood

  # Show snapshots (all, or for one scene)
  python scene_doctor.py --snapshots
  python scene_doctor.py --snapshots evening_mood

Notes:
 - --diagnose never writes anything; --repair only writes when the
   diagnosis reports needs_repair.
 - Prints JSON for list/diagnose/snapshots and plain text for repair.
"""

import argparse
import asyncio
import json
import logging
import sys

from hass_scenes import async_setup, async_unload
from hass_scenes.api import HassError


async def main_async():
    ap = argparse.ArgumentParser(description="Home Assistant scene doctor")
    group = ap.add_mutually_exclusive_group(required=True)
    group.add_argument("--list", action="store_true", help="List scenes and exit")
    group.add_argument("--diagnose", nargs="?", const="", metavar="SCENE", help="Diagnose one scene (or all)")
    group.add_argument("--repair", metavar="SCENE", help="Repair one scene")
    group.add_argument("--snapshots", nargs="?", const="", metavar="SCENE", help="List snapshots (optionally for one scene)")
    ap.add_argument("--config-dir", help="Directory holding config.json and scene_backup.json")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )

    manager = await async_setup(config_dir=args.config_dir)
    try:
        if args.list:
            print(json.dumps(await manager.list_scenes(), indent=2))
        elif args.diagnose is not None:
            if args.diagnose:
                data = await manager.diagnose_scene(args.diagnose)
            else:
                data = await manager.diagnose_all()
            print(json.dumps(data, indent=2))
        elif args.repair:
            print(await manager.repair_scene(args.repair))
        elif args.snapshots is not None:
            print(json.dumps(await manager.list_snapshots(args.snapshots or None), indent=2))
    except HassError as ex:
        print(f"Error: {ex}", file=sys.stderr)
        sys.exit(2)
    finally:
        await async_unload(manager)


def main():
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
