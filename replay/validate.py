# replay-validate: regression gate for taxonomy / registry promotions
# compares baseline vs candidate knowledge over the fixture scenarios, writes replay-diff.json,
# exits non-zero when the allowlist gate fails

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path

from knowledge.loader import compile_knowledge, load_snapshot
from replay.diff import Allowlist, evaluate_gate, parse_allowlist
from replay.runner import load_scenarios, run_replay

logger = logging.getLogger(__name__)

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"
DEFAULT_OUT_DIR = Path("eval/out")
TOP_DIFFS = 5


def load_allowlist(path: Path) -> Allowlist:
    if not path.exists():
        logger.warning("allowlist %s not found; using an empty legacy allowlist", path)
        return parse_allowlist(None)
    return parse_allowlist(json.loads(path.read_text(encoding="utf-8")))


def _env_strict() -> bool:
    return os.getenv("REPLAY_STRICT", "").strip().lower() in {"1", "true", "yes"}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Replay fixture scenarios against baseline and candidate knowledge.")
    parser.add_argument(
        "--baseline-taxonomy",
        type=Path,
        default=FIXTURES_DIR / "knowledge" / "baseline-taxonomy.json",
        help="Path to baseline taxonomy snapshot JSON",
    )
    parser.add_argument(
        "--candidate-taxonomy",
        type=Path,
        default=FIXTURES_DIR / "knowledge" / "candidate-taxonomy.json",
        help="Path to candidate taxonomy snapshot JSON",
    )
    parser.add_argument("--scenarios", type=Path, default=FIXTURES_DIR / "scenarios.json")
    parser.add_argument("--allowlist", type=Path, default=FIXTURES_DIR / "allowlist.json")
    parser.add_argument("--out", type=Path, default=DEFAULT_OUT_DIR, help="Directory for replay-diff.json")
    parser.add_argument(
        "--strict",
        action=argparse.BooleanOptionalAction,
        default=_env_strict(),
        help="Fail on any unlisted change (default from REPLAY_STRICT)",
    )
    args = parser.parse_args(argv)

    baseline = compile_knowledge(load_snapshot(args.baseline_taxonomy))
    candidate = compile_knowledge(load_snapshot(args.candidate_taxonomy))
    scenarios = load_scenarios(args.scenarios)
    allowlist = load_allowlist(args.allowlist)

    report = run_replay(scenarios, baseline, candidate)
    gate = evaluate_gate(report, allowlist, args.strict)

    args.out.mkdir(parents=True, exist_ok=True)
    out_file = args.out / "replay-diff.json"
    out_file.write_text(json.dumps(report.as_dict(), indent=2), encoding="utf-8")

    summary = report.summary
    print("\n=== Replay Validation Report ===\n")
    print(f"Allowlist mode: {allowlist.mode}")
    print(f"Taxonomy: {report.baseline_taxonomy_version} -> {report.candidate_taxonomy_version}")
    print(f"Total scenarios: {summary['totalScenarios']}")
    print(f"RiskLevel changes (up): {summary['riskLevelChangesUp']}")
    print(f"RiskLevel changes (down): {summary['riskLevelChangesDown']}")
    print(f"Added matches: {summary['totalAddedMatches']}")
    print(f"Removed matches: {summary['totalRemovedMatches']}")
    print(f"\nOutput: {out_file}")

    changed = [d for d in report.scenarios if d.risk_level_changed or d.added_matches or d.removed_matches]
    if changed:
        print("\n--- Top diffs ---")
        for diff in changed[:TOP_DIFFS]:
            print(f"\n{diff.scenario_id}:")
            if diff.notes:
                print(f"  {diff.notes}")
            if diff.added_matches:
                print(f"  added: {', '.join(diff.added_matches)}")
            if diff.removed_matches:
                print(f"  removed: {', '.join(diff.removed_matches)}")

    if not gate.passed:
        print("\n--- Gate FAILED ---")
        for failure in gate.failures:
            print(f"  {failure}")
        return 1
    print("\n--- Gate PASSED ---\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
