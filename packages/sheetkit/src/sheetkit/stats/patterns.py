"""Pattern mining over categorical columns.

- frequent single items (``column=value``) at a minimum support
- association rules between frequent items of different columns, with
  support, confidence and lift measured from co-occurrence counts
- sequential transitions of a categorical column in date order
- contrast patterns: numeric mean differences between the two largest
  classes of a categorical column
"""

from __future__ import annotations

import itertools
from collections import Counter
from typing import Sequence

import numpy as np

from sheetkit.models import (
    AssociationRule,
    ContrastPattern,
    FrequentItem,
    PatternReport,
    SequentialPattern,
)
from sheetkit.stats.descriptive import finite

MIN_CONFIDENCE = 0.7
MAX_ITEMS = 50
MAX_RULES = 50
MAX_TRANSITIONS = 20


def transactions(categorical: dict[str, Sequence[str | None]]) -> list[frozenset[str]]:
    """One ``{"col=value", ...}`` itemset per row."""
    names = list(categorical)
    if not names:
        return []
    rows = len(categorical[names[0]])
    return [
        frozenset(
            f"{name}={categorical[name][i]}"
            for name in names
            if categorical[name][i] not in (None, "")
        )
        for i in range(rows)
    ]


def frequent_items(baskets: list[frozenset[str]], min_support: float) -> list[FrequentItem]:
    if not baskets:
        return []
    counts: Counter[str] = Counter(item for basket in baskets for item in basket)
    total = len(baskets)
    items = [
        FrequentItem(item=item, count=count, support=count / total)
        for item, count in counts.items()
        if count / total >= min_support
    ]
    items.sort(key=lambda f: (-f.count, f.item))
    return items[:MAX_ITEMS]


def association_rules(
    baskets: list[frozenset[str]],
    items: list[FrequentItem],
    min_support: float,
    min_confidence: float = MIN_CONFIDENCE,
) -> list[AssociationRule]:
    """Single-antecedent rules ``A -> B`` over items from different columns."""
    total = len(baskets)
    if not total:
        return []
    support_of = {f.item: f.support for f in items}
    pair_counts: Counter[tuple[str, str]] = Counter()
    frequent = set(support_of)
    for basket in baskets:
        present = sorted(basket & frequent)
        for a, b in itertools.combinations(present, 2):
            pair_counts[(a, b)] += 1

    rules: list[AssociationRule] = []
    for (a, b), count in pair_counts.items():
        if a.split("=", 1)[0] == b.split("=", 1)[0]:
            continue
        support = count / total
        if support < min_support:
            continue
        for antecedent, consequent in ((a, b), (b, a)):
            confidence = support / support_of[antecedent]
            if confidence < min_confidence:
                continue
            rules.append(
                AssociationRule(
                    antecedent=antecedent,
                    consequent=consequent,
                    support=finite(support),
                    confidence=finite(confidence),
                    lift=finite(confidence / support_of[consequent]),
                )
            )
    rules.sort(key=lambda r: (-r.lift, -r.confidence, r.antecedent, r.consequent))
    return rules[:MAX_RULES]


def sequential_patterns(
    column: str,
    ordered_values: Sequence[str | None],
) -> list[SequentialPattern]:
    """Transitions between consecutive differing values, most frequent first."""
    values = [v for v in ordered_values if v not in (None, "")]
    transitions: Counter[tuple[str, str]] = Counter(
        (prev, curr) for prev, curr in zip(values, values[1:]) if prev != curr
    )
    outgoing: Counter[str] = Counter()
    for (source, _), count in transitions.items():
        outgoing[source] += count
    return [
        SequentialPattern(
            column=column,
            source=source,
            target=target,
            count=count,
            probability=count / outgoing[source],
        )
        for (source, target), count in transitions.most_common(MAX_TRANSITIONS)
    ]


def contrast_patterns(
    class_column: str,
    classes: Sequence[str | None],
    numeric: dict[str, np.ndarray],
) -> list[ContrastPattern]:
    """Features whose means differ by more than the pooled standard deviation
    between the two most frequent classes."""
    counts = Counter(c for c in classes if c not in (None, ""))
    if len(counts) < 2:
        return []
    (class_a, _), (class_b, _) = counts.most_common(2)
    labels = np.asarray([c if c is not None else "" for c in classes], dtype=object)
    in_a, in_b = labels == class_a, labels == class_b

    patterns: list[ContrastPattern] = []
    for feature, values in numeric.items():
        a = values[in_a]
        b = values[in_b]
        a, b = a[np.isfinite(a)], b[np.isfinite(b)]
        if not a.size or not b.size:
            continue
        pooled = np.concatenate([a, b]).std()
        difference = float(abs(a.mean() - b.mean()))
        if pooled > 0 and difference > pooled:
            patterns.append(
                ContrastPattern(
                    class_column=class_column,
                    class_a=class_a,
                    class_b=class_b,
                    feature=feature,
                    mean_a=finite(a.mean()),
                    mean_b=finite(b.mean()),
                    difference=finite(difference),
                )
            )
    return patterns


def mine_patterns(
    categorical: dict[str, Sequence[str | None]],
    numeric: dict[str, np.ndarray],
    order: Sequence[int] | None = None,
    min_support: float = 0.1,
) -> PatternReport:
    """Run every miner.

    Parameters
    ----------
    categorical:
        Column name to per-row string values (``None`` for empty cells).
    numeric:
        Column name to per-row floats (``NaN`` for empty cells), aligned
        with *categorical*.
    order:
        Row positions in date order; sequential mining is skipped when
        ``None``.
    """
    baskets = transactions(categorical)
    items = frequent_items(baskets, min_support)
    report = PatternReport(
        frequent_items=items,
        association_rules=association_rules(baskets, items, min_support),
    )
    if order is not None:
        for name, values in categorical.items():
            report.sequential_patterns.extend(
                sequential_patterns(name, [values[i] for i in order])
            )
    if categorical:
        class_column = next(iter(categorical))
        report.contrast_patterns = contrast_patterns(
            class_column, categorical[class_column], numeric
        )
    return report
