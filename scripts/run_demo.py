#!/usr/bin/env python3
"""
Demo Runner Script

Pushes the labelled crisis samples through the full Lifeline pipeline and
reports crisis-level and action accuracy, latency and oversight activity.

This script:
1. Loads the sample set using DatasetLoader
2. Processes each sample through SafetyPipeline.process()
3. Tracks crisis-level and action accuracy per category
4. Reports latency against the configured budget
5. Summarises the oversight queue and audit trail afterwards

Usage:
    python scripts/run_demo.py                         # Run all samples
    python scripts/run_demo.py --category distress     # Filter by category
    python scripts/run_demo.py --message-type crisis   # Filter by channel
    python scripts/run_demo.py --verbose               # Show each sample result
    python scripts/run_demo.py --dry-run               # Validate dataset only
"""

import argparse
import asyncio
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from lifeline.config import Settings, configure_logging
from lifeline.data.loader import (
    DEFAULT_DATASET_PATH,
    DatasetLoader,
    Sample,
    VALID_MESSAGE_TYPES,
)
from lifeline.pipeline import SafetyPipeline
from lifeline.schemas.api import TriageResponse
from lifeline.schemas.audit import TimeRange


@dataclass
class SampleResult:
    sample: Sample
    triage: TriageResponse
    level_correct: bool
    action_correct: bool

    @property
    def is_correct(self) -> bool:
        return self.level_correct and self.action_correct


@dataclass
class CategoryStats:
    """Statistics for a single sample category."""

    correct: int = 0
    total: int = 0
    total_latency_ms: float = 0.0

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total > 0 else 0.0

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.total if self.total > 0 else 0.0


@dataclass
class DemoResults:
    """Aggregate results from a demo run."""

    total_samples: int = 0
    level_correct: int = 0
    action_correct: int = 0
    total_latency_ms: float = 0.0
    latencies: list[float] = field(default_factory=list)
    oversight_cases: int = 0
    by_category: dict[str, CategoryStats] = field(default_factory=dict)
    mismatches: list[SampleResult] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def level_accuracy(self) -> float:
        return self.level_correct / self.total_samples if self.total_samples > 0 else 0.0

    @property
    def action_accuracy(self) -> float:
        return self.action_correct / self.total_samples if self.total_samples > 0 else 0.0

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.total_samples if self.total_samples > 0 else 0.0


async def run_demo(
    pipeline: SafetyPipeline,
    samples: list[Sample],
    verbose: bool = False,
) -> DemoResults:
    """
    Run the samples through the pipeline.

    Args:
        pipeline: A started SafetyPipeline
        samples: List of samples to process
        verbose: Whether to print each sample result

    Returns:
        DemoResults with accuracy and timing statistics
    """
    results = DemoResults(total_samples=len(samples))
    start_time = time.time()

    print(f"\nProcessing {len(samples)} samples...")
    print("-" * 60)

    for i, sample in enumerate(samples, 1):
        triage = await pipeline.process(sample.to_request())
        result = triage.result

        sample_result = SampleResult(
            sample=sample,
            triage=triage,
            level_correct=result.crisis_level.value == sample.expected_crisis_level,
            action_correct=result.action.value == sample.expected_action,
        )

        results.level_correct += sample_result.level_correct
        results.action_correct += sample_result.action_correct
        results.total_latency_ms += result.processing_time_ms
        results.latencies.append(result.processing_time_ms)
        if triage.oversight is not None and triage.oversight.case is not None:
            results.oversight_cases += 1
        if not sample_result.is_correct:
            results.mismatches.append(sample_result)

        stats = results.by_category.setdefault(sample.category, CategoryStats())
        stats.total += 1
        stats.total_latency_ms += result.processing_time_ms
        if sample_result.is_correct:
            stats.correct += 1

        if verbose:
            status = "OK" if sample_result.is_correct else "MISMATCH"
            print(
                f"[{i:3d}/{len(samples)}] {status:8s} | "
                f"{sample.id:17s} | "
                f"level {result.crisis_level.value:9s} | "
                f"action {result.action.value:9s} | "
                f"risk {result.risk_score:3d} | "
                f"{result.processing_time_ms:.1f}ms"
            )
        elif i % 10 == 0:
            print(f"  Processed {i}/{len(samples)} samples...")

    results.elapsed_seconds = time.time() - start_time
    return results


def print_report(
    results: DemoResults,
    pipeline: SafetyPipeline,
    show_mismatches: bool = True,
) -> None:
    """Print a formatted report of demo results."""

    print("\n" + "=" * 60)
    print("LIFELINE DEMO RESULTS")
    print("=" * 60)

    print(f"\nCrisis-level accuracy: {results.level_accuracy:.1%}")
    print(f"Action accuracy:       {results.action_accuracy:.1%}")

    budget = pipeline.settings.latency_budget_ms
    over_budget = sum(1 for latency in results.latencies if latency > budget)
    print("\nTiming:")
    print(f"  Total time:      {results.elapsed_seconds:.2f}s")
    print(f"  Avg per sample:  {results.avg_latency_ms:.2f}ms")
    print(f"  Max per sample:  {max(results.latencies, default=0.0):.2f}ms")
    print(f"  Over {budget:.0f}ms budget: {over_budget}")

    print("\nBy Category:")
    print(f"  {'Category':<14} {'Accuracy':>10} {'Correct':>8} {'Total':>6} {'Avg ms':>8}")
    print(f"  {'-'*14} {'-'*10} {'-'*8} {'-'*6} {'-'*8}")
    for category in sorted(results.by_category):
        stats = results.by_category[category]
        print(
            f"  {category:<14} {stats.accuracy:>9.1%} "
            f"{stats.correct:>8} {stats.total:>6} "
            f"{stats.avg_latency_ms:>7.2f}"
        )

    oversight = pipeline.oversight.metrics()
    print("\nOversight:")
    print(f"  Cases opened:    {results.oversight_cases}")
    print(f"  Still queued:    {len(pipeline.oversight.pending_cases())}")
    print(f"  Expert load:     {oversight.expert_utilization:.0%}")

    analytics = pipeline.recorder.analytics(TimeRange.last(1))
    print("\nAudit trail:")
    print(f"  Entries:         {analytics.total_events}")
    for event_type, count in sorted(analytics.events_by_type.items()):
        print(f"    {event_type:<22} {count}")

    if show_mismatches and results.mismatches:
        print(f"\nMismatches ({len(results.mismatches)}):")
        for m in results.mismatches[:10]:
            result = m.triage.result
            content = m.sample.content
            print(f"\n  [{m.sample.id}] {m.sample.category} ({m.sample.message_type})")
            print(f"    Content:  \"{content[:60]}{'...' if len(content) > 60 else ''}\"")
            print(
                f"    Expected: {m.sample.expected_crisis_level} / {m.sample.expected_action}"
            )
            print(f"    Got:      {result.crisis_level.value} / {result.action.value}")

        if len(results.mismatches) > 10:
            print(f"\n  ... and {len(results.mismatches) - 10} more mismatches")

    print("\n" + "=" * 60)


async def _run(settings: Settings, samples: list[Sample], args) -> DemoResults:
    pipeline = SafetyPipeline(settings)
    await pipeline.start()
    try:
        results = await run_demo(pipeline, samples, verbose=args.verbose)
        print_report(results, pipeline, show_mismatches=not args.no_mismatches)
        return results
    finally:
        pipeline.stop()


def main():
    """Main entry point for the demo runner."""

    parser = argparse.ArgumentParser(
        description="Run the Lifeline crisis samples through the safety pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_demo.py                          Run all samples
  python scripts/run_demo.py --category distress      Filter by category
  python scripts/run_demo.py --message-type crisis    Filter by channel
  python scripts/run_demo.py --verbose                Show each result
  python scripts/run_demo.py --dry-run                Validate only
        """
    )

    parser.add_argument(
        "--category",
        help="Filter samples by category"
    )
    parser.add_argument(
        "--message-type",
        choices=sorted(VALID_MESSAGE_TYPES),
        help="Filter samples by channel"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show each sample result"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate dataset without running the pipeline"
    )
    parser.add_argument(
        "--dataset",
        default=str(DEFAULT_DATASET_PATH),
        help="Path to dataset file (default: bundled crisis_samples.json)"
    )
    parser.add_argument(
        "--no-mismatches",
        action="store_true",
        help="Don't show mismatch details in report"
    )

    args = parser.parse_args()

    print("=" * 60)
    print("Lifeline Demo Runner")
    print("=" * 60)

    print(f"\nLoading dataset from {args.dataset}...")
    loader = DatasetLoader(path=args.dataset)

    try:
        samples = loader.load()
    except FileNotFoundError:
        print(f"ERROR: Dataset file not found: {args.dataset}")
        sys.exit(1)
    except ValueError as e:
        print(f"ERROR: Failed to load dataset: {e}")
        sys.exit(1)

    print(f"Loaded {len(samples)} samples")

    validation = loader.validate()
    if not validation.is_valid:
        print("\nDataset validation FAILED:")
        for error in validation.errors:
            print(f"  - {error}")
        if not args.dry_run:
            print("\nFix validation errors before running demo.")
            sys.exit(1)

    if validation.warnings:
        print("\nDataset warnings:")
        for warning in validation.warnings:
            print(f"  - {warning}")

    print("\nDataset distribution (expected crisis level):")
    dist = loader.get_distribution()
    for level, count in sorted(dist.items()):
        pct = count / len(samples) * 100
        print(f"  {level:<10} {count:>3} ({pct:>5.1f}%)")

    if args.dry_run:
        print("\n--dry-run specified, skipping the pipeline.")
        sys.exit(0 if validation.is_valid else 1)

    filtered_samples = list(samples)

    if args.category:
        filtered_samples = [s for s in filtered_samples if s.category == args.category]
        print(f"\nFiltered to category '{args.category}': {len(filtered_samples)} samples")

    if args.message_type:
        filtered_samples = [s for s in filtered_samples if s.message_type == args.message_type]
        print(f"Filtered to channel '{args.message_type}': {len(filtered_samples)} samples")

    if not filtered_samples:
        print("\nNo samples match the specified filters.")
        sys.exit(1)

    settings = Settings()
    configure_logging(settings)
    results = asyncio.run(_run(settings, filtered_samples, args))

    if results.action_accuracy < 0.80:
        print("\nWARNING: Action accuracy below 80% threshold")
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
