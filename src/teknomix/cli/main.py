#!/usr/bin/env python3
"""
Main CLI entry point for Tekno Mix
"""

import sys
import threading
from typing import List, Optional

from .args_parser import parse_command_line
from ..core.config import MixConfiguration
from ..core.errors import TeknoMixError
from ..core.mix_generator import MixGenerator, PreparedTrack
from ..core.models import MixResult, TrackStatus
from ..utils.key_matching import KeyMatcher
from ..utils.logger import setup_logger


class TeknoMixCLI:
    """Main CLI application class"""

    def __init__(self):
        self.config: Optional[MixConfiguration] = None
        self.mixer: Optional[MixGenerator] = None
        self.key_matcher = KeyMatcher()
        self._print_lock = threading.Lock()

    def run(self, args: Optional[List[str]] = None) -> int:
        """Main entry point"""
        try:
            self.config, parsed = parse_command_line(args)
            setup_logger(level=parsed.log_level, log_file=parsed.log_file)

            self.mixer = MixGenerator(self.config)

            print(f"Loading playlist with {len(parsed.tracks)} tracks...\n")
            prepared = self.mixer.prepare_tracks(parsed.tracks, on_status=self._report_status)

            self._print_track_table(prepared)
            self._print_harmonic_flow(prepared)

            print(f"\nRendering {self.config.style.value} mix at {self.config.target_bpm:.0f} BPM...")
            result = self.mixer.render_prepared(prepared, parsed.output)
            self._print_summary(result, parsed.output)

            print("✅ Mix generation completed successfully!")
            return 0

        except TeknoMixError as e:
            print(f"❌ Error: {e.message}")
            return 1
        except ValueError as e:
            print(f"❌ Error: {e}")
            return 1

    def _report_status(self, index: int, name: str, status: TrackStatus):
        """Progress line per status change (called from worker threads)"""
        if status is TrackStatus.PENDING:
            return
        with self._print_lock:
            print(f"  [{index + 1}] {name}: {status.value.lower()}")

    def _print_track_table(self, prepared: List[PreparedTrack]):
        print(f"\n{'#':>3}  {'Track':<32} {'BPM':>7} {'Key':>4}  {'Groove':<26} {'Conf':>5}")
        for i, item in enumerate(prepared, 1):
            a = item.analysis
            if not a.is_ready:
                print(f"{i:>3}  {a.name[:32]:<32}  ERROR: {a.error}")
                continue
            print(f"{i:>3}  {a.name[:32]:<32} {a.bpm:>7.2f} {a.key:>4}  "
                  f"{a.groove_description:<26} {a.confidence:>5.2f}")

    def _print_harmonic_flow(self, prepared: List[PreparedTrack]):
        ready = [p.analysis for p in prepared if p.analysis.is_ready]
        flow = self.key_matcher.analyze_track_flow([a.key for a in ready], [a.name for a in ready])
        if not flow["transitions"]:
            return

        print("\nHarmonic flow:")
        for detail in flow["details"]:
            print(f"  {detail['from_track']} ({detail['from']}) -> "
                  f"{detail['to_track']} ({detail['to']}): {detail['label']}")
        print(f"  Average compatibility: {flow['average_score']:.2f} / 3")

    def _print_summary(self, result: MixResult, output_path: str):
        print(f"\nMix saved to {output_path}")
        print(f"  Duration: {result.duration_minutes:.1f} min ({result.file_size_mb:.1f} MB)")
        for start, technique in result.boundaries:
            minutes, seconds = divmod(start, 60)
            print(f"  {int(minutes):02d}:{seconds:05.2f}  {technique.value}")


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for CLI"""
    cli = TeknoMixCLI()
    return cli.run(args)


if __name__ == "__main__":
    sys.exit(main())
