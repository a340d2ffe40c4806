"""Clarus - Content Analysis Pipeline

Simple CLI for running one analysis pass on a stored content item.
"""

import argparse
import asyncio
import sys

from clarus.errors import ProcessContentError
from clarus.pipeline.controller import ContentPipeline


async def run_pipeline(
    content_id: str,
    user_id: str | None,
    language: str,
    force: bool,
    skip_scraping: bool,
) -> int:
    """Run the pipeline for the given content id."""
    print(f"Processing content: {content_id} ({language})")
    print("-" * 50)

    pipeline = ContentPipeline()
    try:
        result = await pipeline.process_content(
            content_id,
            user_id,
            language,
            force_regenerate=force,
            skip_scraping=skip_scraping,
        )
    except ProcessContentError as exc:
        print(f"\n[!] Error ({exc.status_code}): {exc.message}")
        if exc.upgrade_required:
            print(f"    Upgrade required (current tier: {exc.tier or 'unknown'})")
        return 1

    print(f"\n[*] {result.message}")
    if result.cached:
        print("   Served from cache")
    if result.transcript_id:
        print(f"   Transcript id: {result.transcript_id}")
    if result.sections_generated:
        print(f"   Sections ({len(result.sections_generated)}):")
        for section in result.sections_generated:
            print(f"     - {section}")
    if result.paywall_warning:
        print(f"\n[~] {result.paywall_warning}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Clarus Content Analysis Pipeline")
    parser.add_argument("content_id", help="Content row id")
    parser.add_argument("--user", "-u", help="Owner user id (checked against the content row)")
    parser.add_argument("--language", "-l", default="en", help="Analysis language code")
    parser.add_argument("--force", "-f", action="store_true", help="Regenerate even if a summary exists")
    parser.add_argument("--skip-scraping", action="store_true", help="Use the stored text as-is")

    args = parser.parse_args()

    sys.exit(asyncio.run(run_pipeline(args.content_id, args.user, args.language, args.force, args.skip_scraping)))


if __name__ == "__main__":
    main()
