from __future__ import annotations

import argparse
from dataclasses import replace
import json
import logging
import signal
import threading

from tdmatch.sim.balance import run_batch, seed_range, summarize
from tdmatch.sim.config_loader import load_scenario, load_sim_config, load_strategy
from tdmatch.sim.harness import SimulationHarness, SimulationProgress


logger = logging.getLogger(__name__)


def _print_progress(progress: SimulationProgress) -> None:
    print(
        f"tick={progress.tick} round={progress.current_wave} "
        f"gold={progress.current_gold} lives={progress.remaining_lives}"
    )


def _install_stop_handler(stop: threading.Event):
    if threading.current_thread() is not threading.main_thread():
        return None

    def _handler(signum, frame) -> None:
        logger.warning("stop requested (signal %s), finishing current tick", signum)
        stop.set()

    return signal.signal(signal.SIGINT, _handler)


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Run a self-playing tower defense match without rendering.")
    ap.add_argument("--config", default=None, help="Scenario JSON laid over data/scenarios/default.json")
    ap.add_argument("--strategy", default=None, help="Placement strategy JSON")
    ap.add_argument("--max-ticks", type=int, default=20000)
    ap.add_argument("--tick-duration", type=float, default=0.1)
    ap.add_argument("--progress-every", type=int, default=0, help="Print progress every N ticks (0 = off)")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--runs", type=int, default=1, help="Run a seed batch starting at --seed")
    ap.add_argument("--set", dest="overrides", action="append", default=[], help="Override a config key: a.b=value")
    ap.add_argument("--json", action="store_true", help="Print the result as JSON")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(message)s",
    )

    try:
        scenario = load_scenario(args.config, args.overrides)
        sim_config = load_sim_config(args.config, args.overrides)
        strategy = load_strategy(args.strategy)
    except (OSError, ValueError, KeyError) as exc:
        ap.error(str(exc))
    if args.seed is not None:
        sim_config = replace(sim_config, seed=args.seed)

    if args.runs > 1:
        results = run_batch(
            scenario,
            strategy,
            sim_config=sim_config,
            seeds=seed_range(sim_config.seed, args.runs),
            max_ticks=args.max_ticks,
            tick_duration=args.tick_duration,
        )
        summary = summarize(results)
        if args.json:
            print(json.dumps(summary.to_dict(), indent=2, sort_keys=True))
        else:
            print(
                "runs={runs} wins={wins} win_rate={win_rate:.2f} mean_money={mean_money:.1f} "
                "mean_lives={mean_lives:.1f} mean_score={mean_score:.1f} std_score={std_score:.1f}".format(
                    **summary.to_dict()
                )
            )
            print(f"outcomes={summary.outcomes}")
        return 0 if all(r.success for r in results) else 1

    stop = threading.Event()
    previous = _install_stop_handler(stop)
    harness = SimulationHarness(scenario, sim_config)
    try:
        result = harness.run(
            strategy,
            args.max_ticks,
            args.tick_duration,
            progress=_print_progress if args.progress_every > 0 and not args.json else None,
            progress_every=max(1, args.progress_every),
            stop_event=stop,
        )
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2, sort_keys=True))
    else:
        print(result.summary())
        for wave in result.wave_results:
            print(
                f"  round={wave.round_number} wave={wave.wave_index} name={wave.wave_name} "
                f"completed={wave.completed} killed={wave.enemies_killed} leaked={wave.enemies_leaked} "
                f"money={wave.money_earned} duration={wave.duration:.1f}s"
            )
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
