"""Dominant-host inference over retrieved results.

When a caller supplies no source filter, results from unrelated
documentation sets can mix (say, a JavaScript framework and a Python
library). The dominant host is the source domain with the most hits, with
hosts named in the hint text counting double. Narrowing is a post-filter over
the already-retrieved candidates; the store is never queried again.
"""
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlsplit

import structlog

from dochelper.rag.store import SearchResult

logger = structlog.get_logger()

HINT_BIAS = 2


def source_host(url: Optional[str]) -> str:
    """Host of ``url``, or an empty string when it has none."""
    if not url:
        return ""
    try:
        return urlsplit(url).netloc.lower()
    except ValueError:
        return ""


def host_name_token(host: str) -> str:
    """Second-to-last dot label (``nextjs.org`` -> ``nextjs``), else the host."""
    labels = host.split(".")
    if len(labels) >= 2 and labels[-2]:
        return labels[-2]
    return host


def infer_dominant_host(results: Sequence[SearchResult], hint_text: str) -> Optional[str]:
    """Pick the host the results should be narrowed to.

    Each host scores its hit count, doubled when its name token appears in
    ``hint_text`` (case-insensitive). Ties keep the first host seen.

    Returns:
        The winning host, or None if no result had a parseable host
    """
    counts: Dict[str, int] = {}
    for result in results:
        host = source_host(result.source_url)
        if not host:
            continue
        counts[host] = counts.get(host, 0) + 1

    hint = (hint_text or "").lower()
    best_host = None
    best_score = 0
    for host, count in counts.items():
        bias = HINT_BIAS if host_name_token(host).lower() in hint else 1
        score = count * bias
        if score > best_score:
            best_host, best_score = host, score

    logger.debug("dominant_host_inferred", host=best_host, score=best_score, hosts=len(counts))
    return best_host


def narrow_to_host(results: Sequence[SearchResult], host: str) -> List[SearchResult]:
    """Keep results whose source_url contains ``://<host>``, preserving order."""
    marker = f"://{host}"
    return [r for r in results if marker in (r.source_url or "")]
