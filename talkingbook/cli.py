"""
Command-Line Interface for talkingbook.

Usage:
    talkingbook synthesize book.html -o out/     # Daisy 2.02 fileset from XHTML
    talkingbook synthesize book.html -o out/ --mp3 --bitrate 64
    talkingbook epub book.epub -o out/           # SMIL overlays for an EPUB
    talkingbook crossref out/book.html           # Content heading -> NCC heading
    talkingbook config talkingbook.json          # Write a default config file
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    from talkingbook import __version__

    parser = argparse.ArgumentParser(
        prog="talkingbook",
        description="Synthesized talking books - speech audio with text synchronization",
    )
    parser.add_argument("--version", action="version", version=f"talkingbook {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def add_synthesis_options(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("-o", "--output", required=True, help="Output directory")
        sub.add_argument("-c", "--config", help="Config file (JSON)")
        sub.add_argument("--lang", metavar="CODE", help="Default language for blocks without xml:lang")
        sub.add_argument(
            "--voice",
            action="append",
            default=[],
            metavar="[LANG=]NAME",
            help="Voice name, optionally per language (repeatable)",
        )
        sub.add_argument("--mp3", action="store_true", help="Encode the audio to MP3")
        sub.add_argument("--bitrate", type=int, metavar="KBPS", help="MP3 bitrate (default: 48)")
        sub.add_argument("--keep-wav", action="store_true", help="Keep the WAV file after encoding")

    # --- synthesize ---
    synth_parser = subparsers.add_parser("synthesize", help="Synthesize an XHTML document to a Daisy 2.02 fileset")
    synth_parser.add_argument("content", help="XHTML content document")
    add_synthesis_options(synth_parser)
    synth_parser.add_argument("-t", "--title", help="Publication title")
    synth_parser.add_argument("--identifier", help="Publication identifier (dc:identifier)")
    synth_parser.add_argument("--allow-partial", action="store_true", help="Build the fileset even if cancelled")

    # --- epub ---
    epub_parser = subparsers.add_parser("epub", help="Synthesize an EPUB into SMIL overlays")
    epub_parser.add_argument("source", help="EPUB file")
    add_synthesis_options(epub_parser)

    # --- crossref ---
    crossref_parser = subparsers.add_parser("crossref", help="Map content headings to NCC headings")
    crossref_parser.add_argument("content", help="Content document of a Daisy 2.02 fileset")

    # --- config ---
    config_parser = subparsers.add_parser("config", help="Write a default config file")
    config_parser.add_argument("path", help="Config file to write")

    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_config(args):
    """SynthesisConfig from --config, with command-line overrides applied."""
    from talkingbook.models import SynthesisConfig

    config = SynthesisConfig.load(args.config) if args.config else SynthesisConfig()
    if args.lang:
        config.language = args.lang
    if args.mp3:
        config.encode_mp3 = True
    if args.bitrate:
        config.mp3_bitrate = args.bitrate
    if args.keep_wav:
        config.keep_wav = True
    if getattr(args, "title", None):
        config.title = args.title
    if getattr(args, "identifier", None):
        config.identifier = args.identifier
    return config


def parse_voice_options(values: list[str]) -> tuple[Optional[str], dict[str, str]]:
    """
    Split --voice values into a default voice and per-language voices.

    ``da=da-DK-ChristelNeural`` maps a language; a bare name is the default.
    """
    default = None
    per_language: dict[str, str] = {}
    for value in values:
        language, sep, name = value.partition("=")
        if sep:
            per_language[language.strip()] = name.strip()
        else:
            default = value.strip()
    return default, per_language


def build_voices(args):
    """VoiceSelector of Azure engines for the --voice options."""
    from talkingbook.synthesizer.azure_engine import AzureVoiceEngine, get_default_engine
    from talkingbook.synthesizer.voices import VoiceSelector

    default_voice, per_language = parse_voice_options(args.voice)
    selector = VoiceSelector(default=get_default_engine(default_voice))
    for language, voice_name in per_language.items():
        selector.register(language, AzureVoiceEngine(voice_name))
    return selector


def print_progress(percent: int, message: str) -> bool:
    print(f"  [{percent:3d}%] {message}")
    return True


def cmd_synthesize(args) -> int:
    """Synthesize one content document and build its fileset."""
    from talkingbook.daisy.builder import build_fileset
    from talkingbook.synthesizer.engine import SynthesisError, synthesize_document

    try:
        config = load_config(args)
        voices = build_voices(args)
        output_dir = Path(args.output)

        print(f"Synthesizing: {args.content}")
        synthesis = synthesize_document(
            Path(args.content),
            output_dir,
            voices=voices,
            config=config,
            progress_callback=print_progress,
        )
        result = build_fileset(
            synthesis,
            output_dir,
            config,
            allow_partial=args.allow_partial,
        )

        print(f"\nFileset created: {result.ncc_path}")
        print(f"Duration: {result.total_duration.total_seconds() / 60:.1f} minutes")
        print(f"SMIL files: {len(result.smil_paths)}")
        if result.unresolved_headings:
            print(f"\nWarning: {len(result.unresolved_headings)} heading(s) not linked to the NCC:")
            for match in result.unresolved_headings:
                print(f"  {match.content_uri}")
        return 0

    except SynthesisError as e:
        _print_synthesis_failure(e)
        return 1

    except Exception as e:
        print(f"Error: {e}")
        return 1


def cmd_epub(args) -> int:
    """Synthesize an EPUB into per-document SMIL overlays."""
    from talkingbook.daisy.builder import build_overlays
    from talkingbook.models import SynthesisState
    from talkingbook.parser.epub import extract_publication
    from talkingbook.synthesizer.engine import SynthesisError, synthesize_publication

    try:
        config = load_config(args)
        output_dir = Path(args.output)
        publication = extract_publication(Path(args.source), output_dir / "content")
        if not args.lang and publication.language:
            config.language = publication.language
        config.title = config.title or publication.title
        config.creator = config.creator or publication.creator
        config.identifier = config.identifier or publication.identifier

        print(f"EPUB: {publication.title or args.source} ({len(publication.documents)} documents)")
        voices = build_voices(args)
        synthesis = synthesize_publication(
            publication.documents,
            output_dir / "audio",
            voices=voices,
            config=config,
            progress_callback=print_progress,
        )
        if synthesis.state != SynthesisState.DONE:
            print(f"Synthesis {synthesis.state.value}; overlays not written.")
            return 1

        overlays = build_overlays(synthesis, output_dir, config)
        print(f"\nOverlays created: {len(overlays)}")
        print(f"Duration: {synthesis.duration.total_seconds() / 60:.1f} minutes")
        return 0

    except SynthesisError as e:
        _print_synthesis_failure(e)
        return 1

    except Exception as e:
        print(f"Error: {e}")
        return 1


def _print_synthesis_failure(e) -> None:
    """Print a synthesis failure with the block that failed."""
    print(f"\nSynthesis failed: {e}")

    summary = e.summary
    if summary is None:
        return

    if summary.failed_block_index >= 0:
        print(f"\nFailed block {summary.failed_block_index} in {summary.failed_document}")
        if summary.failed_block_preview:
            print(f"  Text: {summary.failed_block_preview}")
        print(f"  Error: {summary.error}")

    print(f"\nSynthesis summary: {summary.synthesized} of {summary.total_blocks} blocks "
          f"({summary.audio_seconds:.1f}s audio) before the failure")
    print("No fileset was written; the partial audio was removed.")


def cmd_crossref(args) -> int:
    """Print the NCC heading of every content heading."""
    from talkingbook.resolver.documents import DocumentResolver
    from talkingbook.resolver.navigation import HeadingCrossReferencer

    try:
        matches = HeadingCrossReferencer(DocumentResolver()).map_headings(Path(args.content))
    except Exception as e:
        print(f"Error: {e}")
        return 1

    unresolved = 0
    for match in matches:
        if match.resolved:
            print(f"{match.content_uri} -> {match.navigation_href}")
        else:
            unresolved += 1
            print(f"{match.content_uri} -> (unresolved)")
    print(f"\n{len(matches)} heading(s), {unresolved} unresolved")
    return 0 if unresolved == 0 else 2


def cmd_config(args) -> int:
    """Write a default config file."""
    from talkingbook.models import SynthesisConfig

    path = SynthesisConfig().save(args.path)
    print(f"Config written: {path}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(args.verbose)

    commands = {
        "synthesize": cmd_synthesize,
        "epub": cmd_epub,
        "crossref": cmd_crossref,
        "config": cmd_config,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    else:
        print(f"Unknown command: {args.command}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
