"""
Extract product images for every page listed in a CSV file

This script reads page URLs from a CSV file, runs the image extraction
cascade for each one (a bounded number at a time) and writes the results
as JSON lines. Optionally the first image of every page is downloaded.

CSV Format:
- page_url: Product page to scrape (required)
- id: Your own identifier for the row (optional)

Example CSV:
id,page_url
SKU001,https://example.com/product1
SKU002,https://example.com/product2
"""

import argparse
import asyncio
import csv
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

import aiofiles

from config import BATCH_CONCURRENCY, LOG_LEVEL
from image_fetcher import ImageFetchError, fetch_image
from scrape_orchestrator import scrape_page_images
from url_rules import InvalidPageUrl

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(levelname)s - %(message)s'
)

EXTENSIONS = {
    'image/jpeg': '.jpg',
    'image/png': '.png',
    'image/webp': '.webp',
    'image/gif': '.gif',
    'image/avif': '.avif',
}

# Leaves room for a duplicate suffix and extension under the usual 255-byte name limit
MAX_STEM_LENGTH = 200


def read_csv_pages(csv_path: str) -> List[Dict[str, str]]:
    """
    Read pages from CSV file

    Returns:
        List of dictionaries with keys: id, page_url
    """
    pages = []

    with open(csv_path, 'r', encoding='utf-8') as f:
        reader = csv.DictReader(f)

        if 'page_url' not in (reader.fieldnames or []):
            raise ValueError(f"CSV must contain a page_url column. Found: {', '.join(reader.fieldnames or [])}")

        for row_num, row in enumerate(reader, start=2):  # Start at 2 (1 is header)
            page_url = (row.get('page_url') or '').strip()
            if not page_url:
                logging.warning(f"Row {row_num}: Missing page_url, skipping")
                continue
            pages.append({
                'id': (row.get('id') or '').strip() or f"row{row_num}",
                'page_url': page_url,
            })

    logging.info(f"Read {len(pages)} pages from CSV file: {csv_path}")
    return pages


def safe_filename(name: str) -> str:
    name = re.sub(r'[^a-zA-Z0-9_-]', '_', name)
    name = re.sub(r'_+', '_', name).strip('_')
    return name or 'unknown'


def assign_file_stems(pages: List[Dict[str, str]]) -> List[str]:
    """One distinct download file stem per page; later duplicates get a _2, _3... suffix."""
    stems = []
    used = set()
    for page in pages:
        base = safe_filename(page['id'])[:MAX_STEM_LENGTH]
        stem, n = base, 1
        while stem in used:
            n += 1
            stem = f"{base}_{n}"
        if stem != base:
            logging.warning(f"[{page['id']}] Download name '{base}' already taken, using '{stem}'")
        used.add(stem)
        stems.append(stem)
    return stems


async def download_first_image(row_id: str, image_url: str, referer: str, output_dir: str,
                               stem: Optional[str] = None) -> Optional[str]:
    """Fetch one image and write it to output_dir; returns the written path or None."""
    try:
        image = await fetch_image(image_url, referer=referer)
    except ImageFetchError as e:
        logging.warning(f"[{row_id}] Could not download {image_url}: {e}")
        return None
    filename = os.path.join(output_dir, (stem or safe_filename(row_id)) + EXTENSIONS.get(image.content_type, '.img'))
    try:
        async with aiofiles.open(filename, mode='wb') as f:
            await f.write(image.data)
    except OSError as e:
        logging.warning(f"✗ [{row_id}] Could not write {filename}: {e}")
        return None
    return filename


async def process_page(page: Dict[str, str], semaphore: asyncio.Semaphore, use_browser: bool,
                       download_dir: Optional[str], stem: Optional[str] = None) -> Optional[Dict[str, Any]]:
    async with semaphore:
        try:
            result = await scrape_page_images(page['page_url'], use_browser=use_browser)
        except InvalidPageUrl as e:
            logging.warning(f"[{page['id']}] {e}")
            return None
        except Exception as e:
            logging.error(f"✗ [{page['id']}] Extraction failed for {page['page_url']}: {e}")
            return None

        record: Dict[str, Any] = {
            'id': page['id'],
            'page_url': result.page_url,
            'images': result.images,
            'total_found': result.total_found,
            'stages': result.stages,
        }
        if download_dir and result.images:
            record['downloaded'] = await download_first_image(
                page['id'], result.images[0], result.page_url, download_dir, stem=stem
            )
        logging.info(f"✓ [{page['id']}] {len(result.images)} images ({result.total_found} found)")
        return record


async def process_csv_pages(pages: List[Dict[str, str]], output_path: str, concurrency: int,
                            use_browser: bool = True, download_dir: Optional[str] = None) -> int:
    """
    Process pages concurrently and write one JSON line per successful page

    Returns:
        Number of records written
    """
    if not pages:
        logging.info("No pages to process.")
        return 0
    if download_dir:
        os.makedirs(download_dir, exist_ok=True)

    # Each run may launch its own browser, so the pool size is the resource bound
    semaphore = asyncio.Semaphore(max(1, concurrency))
    stems = assign_file_stems(pages)
    records = await asyncio.gather(*[
        process_page(page, semaphore, use_browser, download_dir, stem)
        for page, stem in zip(pages, stems)
    ], return_exceptions=True)

    written = 0
    async with aiofiles.open(output_path, mode='w', encoding='utf-8') as f:
        for page, record in zip(pages, records):
            if isinstance(record, Exception):
                logging.error(f"✗ [{page['id']}] Unexpected error: {record}")
                continue
            if record is None:
                continue
            await f.write(json.dumps(record, ensure_ascii=False) + "\n")
            written += 1
    return written


def main():
    parser = argparse.ArgumentParser(
        description="Extract product image URLs for every page in a CSV file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
CSV Format:
  - page_url: Product page to scrape (required)
  - id: Row identifier (optional)

Example CSV:
  id,page_url
  SKU001,https://example.com/product1
  SKU002,https://example.com/product2
        """
    )
    parser.add_argument(
        "csv_file",
        type=str,
        help="Path to CSV file containing pages to process"
    )
    parser.add_argument(
        "--output",
        default="image_results.jsonl",
        help="Where to write the JSON lines results (default: image_results.jsonl)"
    )
    parser.add_argument(
        "--download-dir",
        default=None,
        help="Also download the first image of every page into this directory"
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=BATCH_CONCURRENCY,
        help=f"Pages processed at the same time (default: {BATCH_CONCURRENCY})"
    )
    parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Never fall back to a rendered browser"
    )

    args = parser.parse_args()

    # Check if CSV file exists
    if not os.path.exists(args.csv_file):
        logging.error(f"CSV file not found: {args.csv_file}")
        return

    try:
        pages = read_csv_pages(args.csv_file)
    except (OSError, ValueError) as e:
        logging.error(f"Error reading CSV file: {e}")
        return

    if not pages:
        logging.warning("No valid pages found in CSV file.")
        return

    written = asyncio.run(process_csv_pages(
        pages, args.output, args.concurrency,
        use_browser=not args.no_browser, download_dir=args.download_dir,
    ))
    logging.info("=" * 60)
    logging.info(f"CSV batch complete: {written}/{len(pages)} pages written to {args.output}")
    logging.info("=" * 60)


if __name__ == "__main__":
    main()
