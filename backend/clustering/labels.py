from __future__ import annotations

from collections import Counter

from clustering.types import Cluster


def cluster_label(cluster: Cluster) -> str:
    count = cluster.count
    meta = cluster.metadata
    if meta.get("type") == "region" and meta.get("regionName"):
        return f"{meta['regionName']} ({count} events)"
    if meta.get("popularityLevel"):
        return f"{meta['popularityLevel']} - {count} events"
    if meta.get("type") == "popular-event":
        return "Popular Event"
    if count == 1:
        return cluster.members[0].props.get("title") or "1 event"
    return f"{count} events"


def cluster_zoom_target(cluster: Cluster, current_zoom: float) -> float:
    """
    Zoom a click on this cluster should fly to.
    """
    if cluster.metadata.get("type") == "region":
        return 15.0
    return float(min(current_zoom + 2.0, 17.0))


def dominant_category(cluster: Cluster) -> str | None:
    # most_common() keeps first-seen order for ties.
    counts = Counter(p.category for p in cluster.members if p.category)
    if not counts:
        return None
    return counts.most_common(1)[0][0]
