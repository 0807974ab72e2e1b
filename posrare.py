import argparse
import concurrent.futures
import io
import math
import os
import queue
import re
import sys
import threading
from collections import Counter
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, TextIO
from urllib.parse import SplitResult, unquote, urlsplit

import pandas as pd
from colorama import Fore, Style, just_fix_windows_console

from constants import (
    DEFAULT_LIMIT,
    DEFAULT_MAX_ENTROPY,
    DEFAULT_POSITION,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_WORKERS,
)
from sample_generation import generate_sample_data

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_INVALID_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
# Digits only, no range check
_VALID_PORT = re.compile(r":[0-9]*")


def shannon_entropy(token: str) -> float:
    """
    Shannon entropy of a string in bits, over its Unicode code points.

    Args:
        token: String to measure

    Returns:
        0.0 for the empty string or a single repeated code point, higher
        values for strings that look random
    """
    if not token:
        return 0.0

    length = len(token)
    entropy = 0.0
    for count in Counter(token).values():
        probability = count / length
        entropy -= probability * math.log2(probability)
    return entropy


class EntropyScorer:
    """
    Memoizing wrapper around shannon_entropy that is safe to share between threads.

    The lock only guards the cache lookup and the final write, so scoring
    different tokens never serializes on it.
    """

    def __init__(self):
        self._cache: Dict[str, float] = {}
        self._lock = threading.Lock()

    def score(self, token: str) -> float:
        with self._lock:
            cached = self._cache.get(token)
        if cached is not None:
            return cached

        entropy = shannon_entropy(token)

        with self._lock:
            self._cache[token] = entropy
        return entropy

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class Job(NamedTuple):
    token: str
    url: str


class AggregateTables:
    """Word frequencies and a representative URL per word, under one lock."""

    def __init__(self):
        self.frequencies: Dict[str, int] = {}
        self.urls: Dict[str, str] = {}
        self._lock = threading.Lock()

    def record(self, token: str, url: str) -> None:
        """
        Count one occurrence of a token and remember the URL it came from.

        Both maps are updated under the same lock. The last URL recorded for
        a token wins.
        """
        with self._lock:
            self.frequencies[token] = self.frequencies.get(token, 0) + 1
            self.urls[token] = url

    def unique_count(self) -> int:
        with self._lock:
            return len(self.frequencies)


class DispatchStats:
    """Counters for the lines seen by a Dispatcher."""

    def __init__(self):
        self.lines = 0
        self.dispatched = 0
        self.malformed = 0
        self.out_of_range = 0
        self.high_entropy = 0

    @property
    def skipped(self) -> int:
        return self.malformed + self.out_of_range + self.high_entropy


def parse_url(url: str) -> SplitResult:
    """
    Parse a URL, rejecting input a strict URL parser would refuse.

    Args:
        url: Raw line to parse

    Returns:
        The split URL

    Raises:
        ValueError: If the line contains control characters, a bad percent
            escape, no scheme before a leading colon, or an invalid port
    """
    if _CONTROL_CHARS.search(url):
        raise ValueError("URL contains control characters")
    if url.startswith(":"):
        raise ValueError("missing protocol scheme")

    parsed = urlsplit(url)

    for component in (parsed.netloc, parsed.path, parsed.fragment):
        if _INVALID_ESCAPE.search(component):
            raise ValueError(f"invalid URL escape in {component!r}")

    host = parsed.netloc.rpartition("@")[2]
    if host.startswith("["):
        port = host.partition("]")[2]
    else:
        port = ":" + host.rpartition(":")[2] if ":" in host else ""
    if port and not _VALID_PORT.fullmatch(port):
        raise ValueError(f"invalid port {port!r} after host")
    return parsed


def extract_segment(path: str, position: int) -> Optional[str]:
    """Return the path segment at the given index, or None if it doesn't exist."""
    if position < 0:
        return None
    segments = path.split("/")
    if len(segments) <= position:
        return None
    return segments[position]


class WorkerPool:
    """
    Fixed number of threads counting jobs from a bounded queue into AggregateTables.

    Producers block in submit() while the queue is full. close() tells every
    worker to stop once the queue drains and join() waits for all of them.
    After a failed update the workers keep draining the queue without
    counting, and join() raises the first error.
    """

    _SENTINEL = object()

    def __init__(
        self,
        tables: AggregateTables,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """
        Args:
            tables: Shared tables the workers update
            workers: Number of worker threads
            queue_size: Maximum number of pending jobs before submit() blocks
        """
        if workers < 1:
            raise ValueError(f"workers must be positive, got {workers}")
        if queue_size < 1:
            raise ValueError(f"queue_size must be positive, got {queue_size}")

        self.tables = tables
        self.workers = workers
        self._jobs: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._futures: List[concurrent.futures.Future] = []
        self._closed = False
        self._error: Optional[Exception] = None
        self._error_lock = threading.Lock()

    def start(self) -> None:
        if self._executor is not None:
            raise RuntimeError("Worker pool already started")

        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="posrare-worker"
        )
        self._futures = [
            self._executor.submit(self._work) for _ in range(self.workers)
        ]

    def submit(self, job: Job) -> None:
        if self._closed:
            raise RuntimeError("Cannot submit jobs to a closed worker pool")
        self._jobs.put(job)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for _ in range(self.workers):
            self._jobs.put(self._SENTINEL)

    def join(self) -> int:
        """
        Wait for every worker to finish.

        Returns:
            Total number of jobs processed

        Raises:
            Exception: The first error raised inside a worker
        """
        if self._executor is None:
            return 0

        processed = 0
        try:
            for future in concurrent.futures.as_completed(self._futures):
                processed += future.result()
        finally:
            self._executor.shutdown(wait=True)
            self._executor = None

        if self._error is not None:
            raise self._error
        return processed

    def _work(self) -> int:
        processed = 0
        while True:
            job = self._jobs.get()
            if job is self._SENTINEL:
                return processed
            if self._error is not None:
                continue
            try:
                self.tables.record(job.token, job.url)
            except Exception as e:
                # Keep draining until the sentinel so producers never block
                with self._error_lock:
                    if self._error is None:
                        self._error = e
                continue
            processed += 1

    def __enter__(self) -> "WorkerPool":
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
        self.join()


class Dispatcher:
    """
    Turns input lines into jobs for a WorkerPool.

    Lines that are not URLs, that have no segment at the configured position
    or whose segment scores above the entropy threshold are dropped silently
    and only counted in the returned DispatchStats.
    """

    def __init__(
        self,
        scorer: EntropyScorer,
        pool: WorkerPool,
        position: int = DEFAULT_POSITION,
        max_entropy: float = DEFAULT_MAX_ENTROPY,
    ):
        self.scorer = scorer
        self.pool = pool
        self.position = position
        self.max_entropy = max_entropy

    def select_segment(self, line: str, stats: DispatchStats) -> Optional[str]:
        try:
            parsed = parse_url(line)
        except ValueError:
            stats.malformed += 1
            return None

        segment = extract_segment(unquote(parsed.path), self.position)
        if segment is None:
            stats.out_of_range += 1
            return None

        if self.scorer.score(segment) > self.max_entropy:
            stats.high_entropy += 1
            return None

        return segment

    def dispatch(self, lines: Iterable[str]) -> DispatchStats:
        """
        Feed every line to the pool, then close it.

        The pool is closed even when reading the input fails, and the error
        is re-raised.

        Args:
            lines: Input lines, one URL per line

        Returns:
            Counters describing what happened to the lines
        """
        stats = DispatchStats()
        try:
            for line in lines:
                line = line.rstrip("\r\n")
                stats.lines += 1
                segment = self.select_segment(line, stats)
                if segment is None:
                    continue
                self.pool.submit(Job(segment, line))
                stats.dispatched += 1
        finally:
            self.pool.close()
        return stats


def rank(frequencies: Dict[str, int], limit: int = DEFAULT_LIMIT) -> List[str]:
    """
    Order words from rarest to most frequent.

    Ties on frequency are broken by the word itself, so the order is stable
    for a given table.

    Args:
        frequencies: Occurrence count per word
        limit: Maximum number of words to return; negative means all

    Returns:
        Words sorted by (frequency, word), truncated to limit
    """
    words = sorted(frequencies, key=lambda word: (frequencies[word], word))
    if limit < 0 or limit > len(words):
        return words
    return words[:limit]


class RareWordsResult(NamedTuple):
    ranked: List[str]
    tables: AggregateTables
    stats: DispatchStats
    scorer: EntropyScorer


def find_rare_words(
    lines: Iterable[str],
    position: int = DEFAULT_POSITION,
    max_entropy: float = DEFAULT_MAX_ENTROPY,
    limit: int = DEFAULT_LIMIT,
    workers: int = DEFAULT_WORKERS,
    queue_size: int = DEFAULT_QUEUE_SIZE,
    scorer: Optional[EntropyScorer] = None,
) -> RareWordsResult:
    """
    Count the low-entropy words at a path position and rank them by rarity.

    Args:
        lines: Input lines, one URL per line
        position: Index into the path split on "/" (the first real segment is 1)
        max_entropy: Segments scoring above this are ignored
        limit: Maximum number of words to return; negative means all
        workers: Number of counting threads
        queue_size: Capacity of the job queue
        scorer: Entropy scorer to reuse, a fresh one is created if None

    Returns:
        The ranked words along with the tables, stats and scorer used
    """
    if scorer is None:
        scorer = EntropyScorer()
    tables = AggregateTables()

    with WorkerPool(tables, workers=workers, queue_size=queue_size) as pool:
        stats = Dispatcher(scorer, pool, position, max_entropy).dispatch(lines)

    return RareWordsResult(rank(tables.frequencies, limit), tables, stats, scorer)


class Renderer:
    """Prints ranked results with the matched segment highlighted."""

    def __init__(
        self,
        scorer: EntropyScorer,
        position: int = DEFAULT_POSITION,
        max_entropy: float = DEFAULT_MAX_ENTROPY,
        verbose: bool = False,
        color: bool = True,
        stream: Optional[TextIO] = None,
    ):
        self.scorer = scorer
        self.position = position
        self.max_entropy = max_entropy
        self.verbose = verbose
        self.color = color
        self.stream = stream if stream is not None else sys.stdout

    def _paint(self, text: str, color: str) -> str:
        if not self.color:
            return text
        return f"{color}{text}{Style.RESET_ALL}"

    def highlight_url(self, url: str, token: str) -> str:
        """
        Rebuild a URL with the first occurrence of token in its path highlighted.

        Userinfo and fragment are dropped; the path is shown decoded.
        """
        parsed = urlsplit(url)
        host = parsed.netloc.rpartition("@")[2]
        path = unquote(parsed.path).replace(token, self._paint(token, Fore.RED), 1)
        query = f"?{parsed.query}" if parsed.query else ""
        return f"{parsed.scheme}://{host}{path}{query}"

    def render(
        self,
        ranked: List[str],
        tables: AggregateTables,
        stats: Optional[DispatchStats] = None,
    ) -> None:
        if self.verbose:
            label = self._paint("Total unique words at selected position", Fore.CYAN)
            self._write(f"{label}: {tables.unique_count()}")
            self._write(f"{self._paint('Entropy level', Fore.CYAN)}: {self.max_entropy:f}")
            if stats is not None:
                self._write(
                    f"{self._paint('Skipped lines', Fore.CYAN)}: "
                    f"malformed={stats.malformed}, "
                    f"out of range={stats.out_of_range}, "
                    f"high entropy={stats.high_entropy}"
                )
            self._write(f"{self._paint(f'Sample of {len(ranked)}', Fore.YELLOW)}:")

        for word in ranked:
            line = self.highlight_url(tables.urls[word], word)
            if self.verbose:
                annotation = (
                    f"(Entropy at position {self.position}: "
                    f"{self.scorer.score(word):.2f})"
                )
                line = f"{self._paint(annotation, Fore.CYAN)}: {line}"
            self._write(line)

    def _write(self, line: str) -> None:
        self.stream.write(line + "\n")


def build_report(
    ranked: List[str], tables: AggregateTables, scorer: EntropyScorer
) -> pd.DataFrame:
    """
    Tabulate ranked words for export.

    Args:
        ranked: Words in ranked order
        tables: Tables the words were counted into
        scorer: Scorer used during dispatch, so entropies come from its cache

    Returns:
        DataFrame with word, frequency, entropy and url columns in ranked order
    """
    return pd.DataFrame(
        {
            "word": ranked,
            "frequency": [tables.frequencies[word] for word in ranked],
            "entropy": [scorer.score(word) for word in ranked],
            "url": [tables.urls[word] for word in ranked],
        },
        columns=["word", "frequency", "entropy", "url"],
    )


def read_from_stdin() -> Iterator[str]:
    """Yield lines from stdin as they arrive, decoding invalid UTF-8 leniently."""
    stdin_wrapper = io.TextIOWrapper(
        sys.stdin.buffer, encoding="utf-8", errors="replace"
    )
    for line in stdin_wrapper:
        yield line


def read_from_file(file_path: str) -> Iterator[str]:
    with open(file_path, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            yield line


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="posrare",
        description=(
            "Reads URLs from stdin and outputs the ones where the word at the "
            "specified position (-p) in the URL path has an entropy below the "
            "specified level, and occur with the least frequency."
        ),
    )
    parser.add_argument(
        "-p",
        type=int,
        default=DEFAULT_POSITION,
        dest="position",
        help="Position in the URL path to extract word from",
    )
    parser.add_argument(
        "-x",
        type=int,
        default=DEFAULT_LIMIT,
        dest="limit",
        help=(
            "Number of URLs to return that contain the least common words at "
            "the specified position. If not specified or if set to -1, all URLs "
            "will be returned. Best used with -v to determine what entropy "
            "level to set."
        ),
    )
    parser.add_argument(
        "-e",
        type=float,
        default=DEFAULT_MAX_ENTROPY,
        dest="entropy",
        help=(
            "Maximum entropy level for the word at the specified position. "
            "Words with higher entropy will be ignored."
        ),
    )
    parser.add_argument(
        "-v",
        action="store_true",
        dest="verbose",
        help="Show total unique words, entropy level and per-URL entropy",
    )
    parser.add_argument("-f", "--file", help="File containing URLs (one per line)")
    parser.add_argument(
        "-o", "--outfile", help="Save results to a file instead of stdout"
    )
    parser.add_argument(
        "-w",
        "--workers",
        type=int,
        default=DEFAULT_WORKERS,
        help="Number of counting threads",
    )
    parser.add_argument(
        "--queue-size",
        type=int,
        default=DEFAULT_QUEUE_SIZE,
        help="Maximum number of URLs waiting to be counted",
    )
    parser.add_argument(
        "--no-color", action="store_true", help="Disable colored output"
    )
    parser.add_argument(
        "--report", help="Also write word, frequency, entropy and url to a CSV file"
    )
    parser.add_argument(
        "--generate-sample",
        action="store_true",
        help="Generate a sample URL corpus and exit",
    )
    parser.add_argument(
        "--sample-size",
        type=int,
        default=1000,
        help="Number of sample URLs to generate (when using --generate-sample)",
    )
    parser.add_argument(
        "--sample-output",
        default="data/sample_urls.txt",
        help="Output file for sample data (when using --generate-sample)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    Command-line interface for posrare.

    Parses command-line arguments, counts the words read from a file or
    stdin and prints the rarest ones.
    """
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.workers < 1 or args.queue_size < 1:
            parser.error("--workers and --queue-size must be positive")

        if args.generate_sample:
            sample_file = generate_sample_data(args.sample_output, args.sample_size)
            print(
                f"Generated {args.sample_size} sample URLs at: {sample_file}\n"
                "To analyze them, run:\n"
                f"posrare -v -f {sample_file}"
            )
            return

        if args.file:
            if not os.path.exists(args.file):
                print(f"Error: File '{args.file}' not found.", file=sys.stderr)
                sys.exit(1)
            if args.verbose:
                print(f"Reading URLs from {args.file}...", file=sys.stderr)
            lines = read_from_file(args.file)
        else:
            if args.verbose:
                print("Reading URLs from stdin...", file=sys.stderr)
            lines = read_from_stdin()

        result = find_rare_words(
            lines,
            position=args.position,
            max_entropy=args.entropy,
            limit=args.limit,
            workers=args.workers,
            queue_size=args.queue_size,
        )

        if args.outfile:
            outfile_dir = os.path.dirname(args.outfile)
            if outfile_dir:
                os.makedirs(outfile_dir, exist_ok=True)
            with open(args.outfile, "w", encoding="utf-8") as f:
                Renderer(
                    result.scorer,
                    position=args.position,
                    max_entropy=args.entropy,
                    verbose=args.verbose,
                    color=False,
                    stream=f,
                ).render(result.ranked, result.tables, result.stats)
            if args.verbose:
                print(f"Results saved to {args.outfile}", file=sys.stderr)
        else:
            just_fix_windows_console()
            Renderer(
                result.scorer,
                position=args.position,
                max_entropy=args.entropy,
                verbose=args.verbose,
                color=not args.no_color and sys.stdout.isatty(),
            ).render(result.ranked, result.tables, result.stats)
            sys.stdout.flush()

        if args.report:
            report_dir = os.path.dirname(args.report)
            if report_dir:
                os.makedirs(report_dir, exist_ok=True)
            build_report(result.ranked, result.tables, result.scorer).to_csv(
                args.report, index=False
            )
            if args.verbose:
                print(f"Report saved to {args.report}", file=sys.stderr)
    except KeyboardInterrupt:
        print("\nProcess interrupted by user. Exiting.", file=sys.stderr)
        sys.exit(0)
    except Exception as e:
        print(f"An error occurred: {str(e)}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
