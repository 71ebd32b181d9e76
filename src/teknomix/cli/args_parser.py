#!/usr/bin/env python3
"""
Command-line argument parser
Centralized argument parsing with validation
"""

import argparse
from typing import List, Optional, Tuple
from pathlib import Path

from ..core.config import (
    TECHNIQUE_OVERLAP_BARS, AudioConstants, FileConstants, MixConfiguration, MixStyle, TransitionTechnique,
)


class ArgumentParser:
    """Argument parser with validation and configuration building"""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create the argument parser with all options"""
        parser = argparse.ArgumentParser(
            prog='tekno-mix',
            description='Tempo-locked techno mix generator with artist-style transitions',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=self._get_examples_text()
        )

        parser.add_argument('tracks', nargs='+', help='Audio track files, mixed in the given order')

        parser.add_argument('--style', default='carola',
                            choices=[style.name.lower() for style in MixStyle],
                            help='Artist archetype driving transition choice (default: carola)')
        parser.add_argument('--output', '-o', default=FileConstants.DEFAULT_OUTPUT_NAME,
                            help=f'Output WAV path (default: {FileConstants.DEFAULT_OUTPUT_NAME})')

        unlisted = ', '.join(t.value for t in TransitionTechnique if t not in TECHNIQUE_OVERLAP_BARS)
        mix_group = parser.add_argument_group('Mixing')
        mix_group.add_argument('--transition-bars', type=int, default=32,
                               choices=AudioConstants.ALLOWED_TRANSITION_BARS,
                               help=f'Overlap for techniques without a fixed length ({unlisted}); '
                                    'the built-in styles never choose these, so their mixes '
                                    'are unaffected (default: 32)')
        mix_group.add_argument('--seed', type=int,
                               help='Seed for reproducible transition choices')
        mix_group.add_argument('--workers', type=int,
                               help='Maximum parallel analysis workers')

        log_group = parser.add_argument_group('Logging')
        log_group.add_argument('--log-level', default='WARNING',
                               choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                               help='Logging level (default: WARNING)')
        log_group.add_argument('--log-file', help='Also write logs to this rotating file')

        return parser

    def _get_examples_text(self) -> str:
        """Get examples text for help"""
        return """
Examples:
  # Minimal groove blends
  tekno-mix track1.wav track2.wav track3.wav

  # Cut-heavy purist techno, reproducible
  tekno-mix --style mills --seed 7 -o mills.wav track1.mp3 track2.mp3
        """

    def parse_args(self, args: Optional[List[str]] = None) -> argparse.Namespace:
        """Parse arguments with validation"""
        parsed = self.parser.parse_args(args)
        self._validate_args(parsed)
        return parsed

    def _validate_args(self, args: argparse.Namespace):
        """Validate parsed arguments"""
        if args.workers is not None and args.workers < 1:
            raise ValueError("Worker count must be at least 1")

        for track_path in args.tracks:
            path = Path(track_path)
            if not path.exists():
                print(f"Warning: File not found: {track_path}")
            elif path.suffix.lower() not in FileConstants.SUPPORTED_FORMATS:
                print(f"Warning: Unrecognized audio format: {track_path}")

    def create_configuration(self, args: argparse.Namespace) -> MixConfiguration:
        """Create MixConfiguration from parsed arguments"""
        config = MixConfiguration(
            style=MixStyle.from_name(args.style),
            transition_length_bars=args.transition_bars,
            seed=args.seed,
            max_workers=args.workers,
        )
        config.validate()
        return config


def parse_command_line(args: Optional[List[str]] = None) -> Tuple[MixConfiguration, argparse.Namespace]:
    """Convenience function to parse command line and return config + parsed namespace"""
    parser = ArgumentParser()
    parsed = parser.parse_args(args)
    return parser.create_configuration(parsed), parsed
