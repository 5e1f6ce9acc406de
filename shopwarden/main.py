"""
shopwarden - Administrative command line

Usage:
    shopwarden --status                 # Gate, lane, healer and pricing status
    shopwarden --reset-kill-switch      # Resume pricing writes after a trip
    shopwarden --autonomy on|off|auto   # Force or release autonomous mode
    shopwarden --jobs                   # Persisted cron job definitions
    shopwarden --snapshots              # Stored snapshots, newest first
    shopwarden --errors                 # Recent error log entries
    shopwarden --run                    # Run the scheduler until Ctrl+C

``--run`` owns the state directory but has no modules of its own. A shop
integration builds an ``AppState``, registers its modules on
``state.agent_loop`` and awaits ``run_forever(state, task_factory=...)``.
"""

import argparse
import asyncio
import json
from typing import List, Optional

from shopwarden import __version__
from shopwarden.app import AppState, build_app_state, run_forever
from shopwarden.core.config import ShopwardenConfig
from shopwarden.core.logger import get_logger

logger = get_logger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _header(title: str) -> None:
    print("=" * 70)
    print(f"  {title}")
    print("=" * 70)


def show_status(state: AppState) -> None:
    _header("SHOPWARDEN - Status")
    status = state.get_status()
    autonomy = status["autonomy"]
    kill_switch = status["pricing"]["kill_switch"]
    print(f"   State dir:   {status['state_dir']}")
    print(f"   Autonomous:  {autonomy['autonomous']} (score {autonomy['net_score']}, "
          f"threshold {autonomy['threshold']}, override {autonomy['override']})")
    print(f"   Kill switch: {'ACTIVE - ' + kill_switch['reason'] if kill_switch['active'] else 'off'}")
    print(f"   Errors:      {status['healer']['total_errors']} logged, "
          f"{status['healer']['snapshots']} snapshots")
    print(f"   Cron jobs:   {len(status['persisted_jobs'])} persisted")
    print()
    _print_json(autonomy["category_scores"])


def set_autonomy(state: AppState, mode: str) -> int:
    # The runner owns the autonomy document while it is up.
    acquired, owner = state.lock.acquire(extra={"entrypoint": "shopwarden --autonomy"})
    if not acquired:
        print(f"⚠️ shopwarden is running (pid {owner.get('pid', 'unknown')}); stop it first.")
        return 1
    try:
        if mode == "auto":
            state.autonomy.clear_override()
        else:
            state.autonomy.set_autonomous_mode(mode == "on")
    finally:
        state.lock.release()
    print(f"✅ Autonomous mode: {mode} (now {'enabled' if state.autonomy.is_autonomous() else 'disabled'})")
    return 0


def reset_kill_switch(state: AppState) -> int:
    active = state.pricing.is_kill_switch_active()
    if not active["active"]:
        print("Kill switch is not active.")
        return 0
    state.pricing.reset_kill_switch()
    print(f"✅ Kill switch reset (was: {active['reason']})")
    if not state.config.pricing.persist_kill_switch:
        print("⚠️ Kill switch persistence is disabled; a running process keeps its own state.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shopwarden",
        description="shopwarden - safety core for autonomous marketplace writes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    shopwarden --status
    shopwarden --autonomy off
    shopwarden --state-dir /srv/shop/.shopwarden --jobs
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--state-dir", type=str, default=None, help="State directory (default: $SHOPWARDEN_STATE_DIR)")

    commands = parser.add_mutually_exclusive_group()
    commands.add_argument("--status", "-s", action="store_true", help="Show system status")
    commands.add_argument("--reset-kill-switch", action="store_true", help="Reset a tripped pricing kill switch")
    commands.add_argument("--autonomy", choices=["on", "off", "auto"], help="Force or release autonomous mode")
    commands.add_argument("--jobs", action="store_true", help="List persisted cron jobs")
    commands.add_argument("--snapshots", action="store_true", help="List stored snapshots")
    commands.add_argument("--errors", type=int, nargs="?", const=20, metavar="N",
                          help="Show the last N error log entries (default: 20)")
    commands.add_argument("--run", action="store_true", help="Run the scheduler until interrupted")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    state = build_app_state(ShopwardenConfig.load(args.state_dir))

    if args.reset_kill_switch:
        return reset_kill_switch(state)
    if args.autonomy:
        return set_autonomy(state, args.autonomy)
    if args.jobs:
        _print_json([record.to_dict() for record in state.scheduler.get_persisted_jobs()])
        return 0
    if args.snapshots:
        _print_json([{"name": s.name, "timestamp": s.timestamp} for s in state.snapshots.list()])
        return 0
    if args.errors is not None:
        _print_json(state.healer.get_recent_errors(args.errors))
        return 0
    if args.run:
        if not state.agent_loop.modules:
            # Modules are callables; embedders register them and call run_forever themselves.
            print("⚠️ No agent-loop modules registered; the scheduler will only hold persisted definitions.")
        try:
            asyncio.run(run_forever(state))
        except RuntimeError as exc:
            print(f"⚠️ {exc}")
            return 1
        except KeyboardInterrupt:
            print("\n\n👋 Interrupted by user. Goodbye!")
        return 0

    show_status(state)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
