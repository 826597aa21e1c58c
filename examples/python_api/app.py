from __future__ import annotations

import argparse
from pathlib import Path

from scw_provisioner.config import apply, load, plan


def _progress(change: object, event: str) -> None:
    address = getattr(change, "address", "unknown")
    if event == "start":
        print(f"[apply:start] {address}")
    else:
        print(f"[apply:done]  {address}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Plan/apply scw-provisioner config via Python API")
    parser.add_argument("--config", default="scw-provisioner.yaml", help="Path to config file")
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument(
        "--no-refresh",
        action="store_true",
        help="Skip refresh during plan",
    )
    parser.add_argument(
        "--parallelism",
        type=int,
        default=10,
        help="Maximum concurrent resource operations",
    )
    args = parser.parse_args()

    config = load(Path(args.config))

    plan_obj = plan(config, refresh=not args.no_refresh)
    print("Plan summary:", plan_obj.summary())
    for change in plan_obj.changes:
        suffix = f" (replace: {', '.join(change.replace_fields)})" if change.replace_fields else ""
        print(f"- {change.action.value:7} {change.address}{suffix}")

    if args.apply:
        result = apply(plan_obj, config, progress=_progress, parallelism=args.parallelism)
        print("Apply summary:", result.summary())


if __name__ == "__main__":
    main()
