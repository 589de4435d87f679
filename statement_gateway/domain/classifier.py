"""Pattern classifier - tags statement lines by description text"""

import re
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from statement_gateway.domain.column_mapping import normalize_header
from statement_gateway.domain.models import LineClassification, StatementLine


@dataclass(frozen=True)
class LocaleRules:
    """Phrase tables for one statement language, compared accent-insensitively"""

    payment_received: Tuple[str, ...]
    refund: Tuple[str, ...]
    installment_labels: Tuple[str, ...]


LOCALE_RULES: Dict[str, LocaleRules] = {
    "pt_BR": LocaleRules(
        payment_received=("pagamento recebido", "pagamento de fatura recebido"),
        refund=("estorno", "reembolso", "credito de estorno"),
        installment_labels=("parcela", "parc"),
    ),
    "en": LocaleRules(
        payment_received=("payment received", "payment - thank you", "payment thank you"),
        refund=("refund", "reversal", "chargeback"),
        installment_labels=("installment", "inst"),
    ),
}


class PatternClassifier:
    """
    Ordered first-match-wins rules:

    1. payment received phrase -> paymentReceived
    2. refund/reversal phrase  -> refund (amount sign untouched)
    3. "<label> N/M" marker    -> installment with N and M
    4. anything else           -> purchase

    Best effort: a wrong label only changes badges downstream, so
    classification never raises.
    """

    def __init__(self, locales: Optional[Iterable[str]] = None):
        selected = [LOCALE_RULES[name] for name in (locales or LOCALE_RULES.keys()) if name in LOCALE_RULES]
        if not selected:
            selected = list(LOCALE_RULES.values())

        self.payment_phrases = [p for rules in selected for p in rules.payment_received]
        self.refund_phrases = [p for rules in selected for p in rules.refund]
        labels = sorted({label for rules in selected for label in rules.installment_labels}, key=len, reverse=True)
        self.installment_re = re.compile(
            r"\b(?:" + "|".join(re.escape(label) for label in labels) + r")\.?\s*(\d+)\s*/\s*(\d+)\b"
        )

    def classify(self, line: StatementLine) -> StatementLine:
        text = normalize_header(line.raw_description)

        if any(phrase in text for phrase in self.payment_phrases):
            return replace(line, classification=LineClassification.PAYMENT_RECEIVED,
                           installment_index=None, installment_total=None)

        if any(phrase in text for phrase in self.refund_phrases):
            return replace(line, classification=LineClassification.REFUND,
                           installment_index=None, installment_total=None)

        match = self.installment_re.search(text)
        if match:
            index, total = int(match.group(1)), int(match.group(2))
            if 0 < index <= total:
                return replace(line, classification=LineClassification.INSTALLMENT,
                               installment_index=index, installment_total=total)

        return replace(line, classification=LineClassification.PURCHASE,
                       installment_index=None, installment_total=None)

    def classify_lines(self, lines: Sequence[StatementLine]) -> List[StatementLine]:
        return [self.classify(line) for line in lines]


def classify_lines(lines: Sequence[StatementLine], locales: Optional[Iterable[str]] = None) -> List[StatementLine]:
    return PatternClassifier(locales).classify_lines(lines)
