import os
import random
from typing import Optional

import pandas as pd

from constants import (
    BASE_DOMAINS,
    COMMON_PATH_SEGMENTS,
    QUERY_STRINGS,
    RARE_PATH_SEGMENTS,
    TAIL_SEGMENTS,
    generate_id,
    generate_random_string,
)


def _build_url(first_segment: str) -> str:
    """Builds a URL whose first path segment is the given word."""
    domain = random.choice(BASE_DOMAINS)
    tail = random.choice(TAIL_SEGMENTS)
    return f"https://{domain}/{first_segment}/{tail}{random.choice(QUERY_STRINGS)}"


def generate_sample_data(
    output_file: str, num_samples: int = 1000, seed: Optional[int] = None
) -> str:
    """
    Generate a sample URL corpus for tuning the entropy threshold.

    Most URLs share a handful of common first segments, a few carry rare
    human-chosen words and the rest carry random ids that should be
    filtered out by entropy.

    Args:
        output_file: Path where the URLs will be saved, one per line
        num_samples: Number of URLs to generate
        seed: Seed for reproducible output

    Returns:
        Path to the generated sample file
    """
    if seed is not None:
        random.seed(seed)

    rare_count = min(num_samples, max(1, num_samples // 20))
    random_count = min(num_samples - rare_count, num_samples // 5)
    common_count = num_samples - rare_count - random_count

    rows = []
    for _ in range(common_count):
        rows.append((_build_url(random.choice(COMMON_PATH_SEGMENTS)), "common"))
    for _ in range(rare_count):
        rows.append((_build_url(random.choice(RARE_PATH_SEGMENTS)), "rare"))
    for _ in range(random_count):
        token = random.choice([generate_id, generate_random_string])()
        rows.append((_build_url(token), "random"))

    df = pd.DataFrame(rows, columns=["url", "kind"])
    df = df.sample(frac=1, random_state=seed).reset_index(drop=True)

    output_dir = os.path.dirname(output_file)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    df[["url"]].to_csv(output_file, index=False, header=False)

    return output_file
