"""
Deterministic header patterns for Norwegian and English customer exports.

Each pattern carries a priority; confidence is ``1 - (priority - 1) * 0.1``.
Within one header the first matching pattern wins.  Across headers the
highest confidence wins per target field, earlier headers winning ties.

ZERO I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class HeaderPattern:
    pattern: re.Pattern[str]
    target_field: str
    priority: int

    @property
    def confidence(self) -> float:
        return round(1 - (self.priority - 1) * 0.1, 2)


def _p(regex: str, target: str, priority: int) -> HeaderPattern:
    return HeaderPattern(re.compile(regex, re.IGNORECASE), target, priority)


HEADER_PATTERNS: tuple[HeaderPattern, ...] = (
    # name
    _p(r"^(kunde)?navn$", "navn", 1),
    _p(r"^(firma|bedrift|selskap|virksomhet)(s?navn)?$", "navn", 2),
    _p(r"^(name|customer|client)$", "navn", 3),
    _p(r"^(organisasjon|org\.?)(s?navn)?$", "navn", 2),
    # address
    _p(r"^adresse$", "adresse", 1),
    _p(r"^(gate|vei|steds?)(adresse|navn)?$", "adresse", 2),
    _p(r"^(besøks?)?adresse$", "adresse", 1),
    _p(r"^address$", "adresse", 3),
    _p(r"^street$", "adresse", 3),
    # postal code
    _p(r"^post(nummer|nr|kode)?$", "postnummer", 1),
    _p(r"^(zip|postal)(code|kode)?$", "postnummer", 2),
    _p(r"^pnr$", "postnummer", 2),
    # city
    _p(r"^(post)?sted$", "poststed", 1),
    _p(r"^by$", "poststed", 2),
    _p(r"^(city|town|kommune)$", "poststed", 3),
    # phone
    _p(r"^(tele)?fon(nummer)?$", "telefon", 1),
    _p(r"^mobil(nummer|tlf|telefon)?$", "telefon", 1),
    _p(r"^tlf\.?$", "telefon", 1),
    _p(r"^(phone|mobile|cell)$", "telefon", 3),
    _p(r"^nr\.?$", "telefon", 4),
    # email
    _p(r"^e?-?post(adresse)?$", "epost", 1),
    _p(r"^e?-?mail$", "epost", 1),
    # contact person
    _p(r"^kontakt(person)?$", "kontaktperson", 1),
    _p(r"^(ansvarlig|daglig\s?leder)$", "kontaktperson", 2),
    _p(r"^(contact|person)$", "kontaktperson", 3),
    # category
    _p(r"^kategori$", "kategori", 1),
    _p(r"^(klient)?type$", "kategori", 2),
    _p(r"^(category|type|class)$", "kategori", 3),
    _p(r"^bransje$", "kategori", 2),
    # notes
    _p(r"^(notat(er)?|merknad(er)?|info)$", "notater", 1),
    _p(r"^kommentar(er)?$", "notater", 2),
    _p(r"^(notes?|comments?|remarks?)$", "notater", 3),
    _p(r"^beskrivelse$", "notater", 2),
    # electrical inspections
    _p(r"^siste.*(el|elektrisk).*kontroll$", "siste_el_kontroll", 1),
    _p(r"^neste.*(el|elektrisk).*kontroll$", "neste_el_kontroll", 1),
    _p(r"^(el|elektrisk).?kontroll.*(siste|utført)$", "siste_el_kontroll", 1),
    _p(r"^(el|elektrisk).?kontroll.*(neste|planlagt)$", "neste_el_kontroll", 1),
    # fire alarm inspections
    _p(r"^siste.*(brann|alarm).*kontroll$", "siste_brann_kontroll", 1),
    _p(r"^neste.*(brann|alarm).*kontroll$", "neste_brann_kontroll", 1),
    _p(r"^(brann|alarm).?kontroll.*(siste|utført)$", "siste_brann_kontroll", 1),
    _p(r"^(brann|alarm).?kontroll.*(neste|planlagt)$", "neste_brann_kontroll", 1),
    # generic inspection dates
    _p(r"^(siste|forrige|utført).*kontroll$", "siste_kontroll", 3),
    _p(r"^(neste|planlagt|kommende).*kontroll$", "neste_kontroll", 3),
    _p(r"^kontroll.*(dato|siste|utført)$", "siste_kontroll", 3),
    _p(r"^kontroll.*(neste|planlagt)$", "neste_kontroll", 3),
    _p(r"^(sist|last).*(date|dato)$", "siste_kontroll", 4),
    _p(r"^(next|neste).*(date|dato)$", "neste_kontroll", 4),
    # installation type
    _p(r"^(el|elektrisk)?.?type$", "el_type", 2),
    _p(r"^(anleggs?)?type$", "el_type", 3),
    _p(r"^(landbruk|næring|bolig|gartneri)$", "el_type", 1),
    # fire alarm system
    _p(r"^(brann|alarm)?.?system$", "brann_system", 2),
    _p(r"^(sentral|utstyr)(s?type)?$", "brann_system", 2),
    _p(r"^(elotec|icas)$", "brann_system", 1),
    # interval
    _p(r"^intervall$", "kontroll_intervall_mnd", 2),
    _p(r"^(kontroll)?frekvens$", "kontroll_intervall_mnd", 2),
    _p(r"^(mnd|måneder|months?)$", "kontroll_intervall_mnd", 3),
    # organization number
    _p(r"^(org\.?|organisasjons?)?(nr|nummer)$", "org_nummer", 1),
    # external id
    _p(r"^(ekstern|external)?.?(id|kode)$", "ekstern_id", 2),
    _p(r"^(kunde)?(nr|nummer|id)$", "ekstern_id", 3),
)

DATE_FIELDS: frozenset[str] = frozenset(
    {
        "siste_kontroll",
        "neste_kontroll",
        "siste_el_kontroll",
        "neste_el_kontroll",
        "siste_brann_kontroll",
        "neste_brann_kontroll",
    }
)

_COMPACT = re.compile(r"[_\s-]+")


@dataclass(frozen=True)
class PatternSuggestion:
    source_column: str
    target_field: str
    confidence: float


def match_header(header: str) -> HeaderPattern | None:
    """First pattern matching the header as written or in compact form."""
    compact = _COMPACT.sub("", header.lower())
    for hp in HEADER_PATTERNS:
        if hp.pattern.search(header) or hp.pattern.search(compact):
            return hp
    return None


def suggest_column_mappings(headers: Sequence[str]) -> list[PatternSuggestion]:
    """One suggestion per target field, best confidence wins, header order kept."""
    assigned: dict[str, PatternSuggestion] = {}
    for header in headers:
        hp = match_header(header)
        if hp is None:
            continue
        existing = assigned.get(hp.target_field)
        if existing is None or hp.confidence > existing.confidence:
            assigned[hp.target_field] = PatternSuggestion(header, hp.target_field, hp.confidence)
    order = {h: i for i, h in enumerate(headers)}
    return sorted(assigned.values(), key=lambda s: order[s.source_column])


def detect_column_targets(headers: Sequence[str]) -> dict[str, str]:
    """header -> target field for every confidently recognized header."""
    return {s.source_column: s.target_field for s in suggest_column_mappings(headers)}
