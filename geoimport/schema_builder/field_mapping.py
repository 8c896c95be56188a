"""Language-aware detection of which columns play the standard event roles.

Roles: title, description, location name, timestamp, free-text location
(address) and latitude/longitude. Candidates are scored by how specific the
matching name pattern is (60%) and how well the column's statistics fit the
role (40%). Dataset overrides always win over detected paths.
"""

import re
from datetime import datetime
from typing import Callable, Optional

from geoimport.models import FieldMappingOverrides, FieldMappings, FieldStatistics, split_field_path

from .pattern_detection import LATITUDE_PATTERNS, LONGITUDE_PATTERNS, numeric_share_in_range

__all__ = ["SUPPORTED_LANGUAGES", "detect_field_mappings", "apply_overrides"]

SUPPORTED_LANGUAGES = ("eng", "deu", "fra", "spa", "ita", "nld", "por")

_RAW_PATTERNS: dict[str, dict[str, list[str]]] = {
    "title": {
        "eng": [r"^title$", r"^name$", r"^event.*name$", r"^event.*title$", r"^label$", r"^event$"],
        "deu": [r"^titel$", r"^name$", r"^bezeichnung$", r"^veranstaltung.*name$", r"^veranstaltung.*titel$", r"^veranstaltung$"],
        "fra": [r"^titre$", r"^nom$", r"^événement.*nom$", r"^événement.*titre$", r"^intitulé$", r"^événement$"],
        "spa": [r"^título$", r"^nombre$", r"^evento.*nombre$", r"^evento.*título$", r"^denominación$", r"^evento$"],
        "ita": [r"^titolo$", r"^nome$", r"^evento.*nome$", r"^evento.*titolo$", r"^denominazione$", r"^evento$"],
        "nld": [r"^titel$", r"^naam$", r"^evenement.*naam$", r"^evenement.*titel$", r"^benaming$", r"^evenement$"],
        "por": [r"^título$", r"^nome$", r"^evento.*nome$", r"^evento.*título$", r"^denominação$", r"^evento$"],
    },
    "description": {
        "eng": [r"^description$", r"^details$", r"^summary$", r"^notes$", r"^text$", r"^content$", r"^event.*description$"],
        "deu": [r"^beschreibung$", r"^details$", r"^zusammenfassung$", r"^notizen$", r"^text$", r"^inhalt$", r"^veranstaltung.*beschreibung$"],
        "fra": [r"^description$", r"^détails$", r"^résumé$", r"^notes$", r"^texte$", r"^contenu$", r"^événement.*description$"],
        "spa": [r"^descripción$", r"^detalles$", r"^resumen$", r"^notas$", r"^texto$", r"^contenido$", r"^evento.*descripción$"],
        "ita": [r"^descrizione$", r"^dettagli$", r"^sommario$", r"^note$", r"^testo$", r"^contenuto$", r"^evento.*descrizione$"],
        "nld": [r"^beschrijving$", r"^details$", r"^samenvatting$", r"^notities$", r"^tekst$", r"^inhoud$", r"^evenement.*beschrijving$"],
        "por": [r"^descrição$", r"^detalhes$", r"^resumo$", r"^notas$", r"^texto$", r"^conteúdo$", r"^evento.*descrição$"],
    },
    "location_name": {
        "eng": [r"^venue$", r"^venue.*name$", r"^place$", r"^place.*name$", r"^location$", r"^location.*name$", r"^site$", r"^spot$", r"^where$"],
        "deu": [r"^veranstaltungsort$", r"^ort$", r"^spielstätte$", r"^standort$", r"^platz$", r"^lokalität$", r"^wo$"],
        "fra": [r"^lieu$", r"^endroit$", r"^place$", r"^salle$", r"^site$", r"^où$"],
        "spa": [r"^lugar$", r"^sitio$", r"^local$", r"^sede$", r"^recinto$", r"^donde$", r"^dónde$"],
        "ita": [r"^luogo$", r"^posto$", r"^locale$", r"^sede$", r"^sito$", r"^dove$"],
        "nld": [r"^locatie$", r"^plaats$", r"^plek$", r"^zaal$", r"^site$", r"^waar$"],
        "por": [r"^local$", r"^lugar$", r"^recinto$", r"^sede$", r"^sítio$", r"^onde$"],
    },
    "timestamp": {
        "eng": [r"^date$", r"^timestamp$", r"^datetime$", r"^date.*time$", r"^created.*at$", r"^event.*date$", r"^event.*time$", r"^time$", r"^when$"],
        "deu": [r"^datum$", r"^zeitstempel$", r"^erstellt.*am$", r"^veranstaltung.*datum$", r"^veranstaltung.*zeit$", r"^zeit$", r"^wann$"],
        "fra": [r"^date$", r"^horodatage$", r"^créé.*le$", r"^événement.*date$", r"^événement.*heure$", r"^heure$", r"^quand$"],
        "spa": [r"^fecha$", r"^timestamp$", r"^creado.*el$", r"^evento.*fecha$", r"^evento.*hora$", r"^hora$", r"^cuándo$"],
        "ita": [r"^data$", r"^timestamp$", r"^creato.*il$", r"^evento.*data$", r"^evento.*ora$", r"^ora$", r"^quando$"],
        "nld": [r"^datum$", r"^tijdstempel$", r"^gemaakt.*op$", r"^evenement.*datum$", r"^evenement.*tijd$", r"^tijd$", r"^wanneer$"],
        "por": [r"^data$", r"^timestamp$", r"^criado.*em$", r"^evento.*data$", r"^evento.*hora$", r"^hora$", r"^quando$"],
    },
    "location": {
        "eng": [r"^address$", r"^addr$", r"^location$", r"^place$", r"^venue$", r"^city$", r"^town$", r"^region$", r"^area$", r"^street$", r"^full.*address$", r"^event.*location$", r"^event.*address$", r"^event.*place$", r"^postal.*address$"],
        "deu": [r"^adresse$", r"^ort$", r"^standort$", r"^platz$", r"^veranstaltungsort$", r"^stadt$", r"^region$", r"^straße$", r"^strasse$", r"^vollständige.*adresse$", r"^veranstaltung.*ort$", r"^veranstaltung.*adresse$", r"^postadresse$"],
        "fra": [r"^adresse$", r"^lieu$", r"^emplacement$", r"^place$", r"^salle$", r"^ville$", r"^région$", r"^rue$", r"^adresse.*complète$", r"^événement.*lieu$", r"^événement.*adresse$", r"^adresse.*postale$"],
        "spa": [r"^dirección$", r"^lugar$", r"^ubicación$", r"^sitio$", r"^local$", r"^ciudad$", r"^región$", r"^calle$", r"^dirección.*completa$", r"^evento.*lugar$", r"^evento.*dirección$", r"^dirección.*postal$"],
        "ita": [r"^indirizzo$", r"^luogo$", r"^posizione$", r"^posto$", r"^locale$", r"^città$", r"^regione$", r"^via$", r"^indirizzo.*completo$", r"^evento.*luogo$", r"^evento.*indirizzo$", r"^indirizzo.*postale$"],
        "nld": [r"^adres$", r"^locatie$", r"^plaats$", r"^plek$", r"^zaal$", r"^stad$", r"^regio$", r"^straat$", r"^volledig.*adres$", r"^evenement.*locatie$", r"^evenement.*adres$", r"^postadres$"],
        "por": [r"^endereço$", r"^local$", r"^localização$", r"^lugar$", r"^recinto$", r"^cidade$", r"^região$", r"^rua$", r"^endereço.*completo$", r"^evento.*local$", r"^evento.*endereço$", r"^endereço.*postal$"],
    },
}

FIELD_PATTERNS: dict[str, dict[str, list[re.Pattern]]] = {
    role: {lang: [re.compile(p, re.IGNORECASE) for p in patterns] for lang, patterns in by_lang.items()}
    for role, by_lang in _RAW_PATTERNS.items()
}


# ------------------------------------------------------------------
# Validators: statistics -> fitness score in [0, 1]
# ------------------------------------------------------------------

def _string_share(stats: FieldStatistics) -> float:
    if stats.occurrences == 0:
        return 0.0
    return stats.type_distribution.get("string", 0) / stats.occurrences


def _avg_string_length(stats: FieldStatistics) -> Optional[float]:
    strings = [s for s in stats.unique_samples if isinstance(s, str)]
    if not strings:
        return None
    return sum(len(s) for s in strings) / len(strings)


def _banded(stats: FieldStatistics, min_share: float, bands: list[tuple[float, float, float]], short: tuple[float, float], fallback: float) -> float:
    if _string_share(stats) < min_share:
        return 0.0
    if not stats.unique_samples:
        return 0.5
    avg = _avg_string_length(stats)
    if avg is None:
        return 0.0
    for low, high, score in bands:
        if low <= avg <= high:
            return score
    limit, score = short
    if avg < limit:
        return score
    return fallback


def _validate_title(stats: FieldStatistics) -> float:
    return _banded(stats, 0.8, [(10, 100, 1.0), (5, 200, 0.8)], (3, 0.3), 0.6)


def _validate_description(stats: FieldStatistics) -> float:
    return _banded(stats, 0.7, [(20, 500, 1.0), (10, 1000, 0.8)], (5, 0.2), 0.6)


def _validate_location_name(stats: FieldStatistics) -> float:
    return _banded(stats, 0.7, [(3, 50, 1.0), (2, 100, 0.8)], (2, 0.2), 0.6)


def _validate_location(stats: FieldStatistics) -> float:
    return _banded(stats, 0.7, [(3, 100, 1.0), (2, 500, 0.8)], (2, 0.2), 0.6)


def _parses_as_date(value: str) -> bool:
    candidate = value.strip().replace("Z", "+00:00")
    try:
        datetime.fromisoformat(candidate)
        return True
    except ValueError:
        pass
    for fmt in ("%d/%m/%Y", "%m/%d/%Y", "%d.%m.%Y", "%Y/%m/%d", "%d-%m-%Y"):
        try:
            datetime.strptime(candidate, fmt)
            return True
        except ValueError:
            continue
    return False


def _validate_timestamp(stats: FieldStatistics) -> float:
    if stats.occurrences == 0:
        return 0.0
    date_tags = stats.type_distribution.get("date", 0)
    if date_tags / stats.occurrences > 0.7:
        return 1.0

    date_formats = stats.formats.get("date", 0) + stats.formats.get("date_time", 0)
    if date_formats:
        return min(1.0, 0.7 + (date_formats / stats.occurrences) * 0.3)

    strings = [s for s in stats.unique_samples if isinstance(s, str)][:10]
    if strings and _string_share(stats) > 0.5:
        share = sum(1 for s in strings if _parses_as_date(s)) / len(strings)
        if share >= 0.7:
            return 0.9
        if share >= 0.5:
            return 0.7
        if share >= 0.3:
            return 0.5

    ns = stats.numeric_stats
    if ns is not None:
        if 1_000_000_000 < ns.min and ns.max < 9_999_999_999:
            return 0.8
        if 1_000_000_000_000 < ns.min and ns.max < 9_999_999_999_999:
            return 0.8
    return 0.0


_VALIDATORS: dict[str, Callable[[FieldStatistics], float]] = {
    "title": _validate_title,
    "description": _validate_description,
    "location_name": _validate_location_name,
    "timestamp": _validate_timestamp,
    "location": _validate_location,
}


# ------------------------------------------------------------------
# Detection
# ------------------------------------------------------------------

def _best_match(field_stats: dict[str, FieldStatistics], patterns: list[re.Pattern], role: str) -> Optional[str]:
    best_path, best_score = None, 0.0
    validator = _VALIDATORS[role]
    for path in sorted(field_stats):
        name = split_field_path(path)[-1]
        index = next((i for i, p in enumerate(patterns) if p.search(name)), None)
        if index is None:
            continue
        validation = validator(field_stats[path])
        if validation == 0:
            continue
        score = (1 - index / len(patterns)) * 0.6 + validation * 0.4
        if score > best_score:
            best_path, best_score = path, score
    return best_path


def _detect_role(field_stats: dict[str, FieldStatistics], role: str, language: str) -> Optional[str]:
    by_lang = FIELD_PATTERNS[role]
    match = _best_match(field_stats, by_lang.get(language, by_lang["eng"]), role)
    if match is None and language != "eng":
        match = _best_match(field_stats, by_lang["eng"], role)
    return match


def _coordinate_confidence(stats: FieldStatistics, patterns: list[re.Pattern], bound: float) -> float:
    name = split_field_path(stats.path)[-1]
    index = next((i for i, p in enumerate(patterns) if p.search(name)), None)
    if index is None:
        return 0.0
    share = numeric_share_in_range(stats, bound)
    if share == 0:
        return 0.0
    total = sum(stats.type_distribution.values()) or 1
    consistency = max(stats.type_distribution.values(), default=0) / total
    completeness = (stats.occurrences - stats.null_count) / stats.occurrences if stats.occurrences else 0
    return (1 - index / len(patterns)) * 0.4 + share * 0.3 + consistency * 0.2 + completeness * 0.1


def _detect_coordinate(field_stats: dict[str, FieldStatistics], patterns: list[re.Pattern], bound: float) -> Optional[str]:
    best_path, best = None, 0.0
    for path in sorted(field_stats):
        confidence = _coordinate_confidence(field_stats[path], patterns, bound)
        if confidence > best:
            best_path, best = path, confidence
    return best_path


def detect_field_mappings(field_stats: dict[str, FieldStatistics], language: str = "eng") -> FieldMappings:
    """Propose column roles from accumulated statistics."""
    latitude = _detect_coordinate(field_stats, LATITUDE_PATTERNS, 90)
    longitude = _detect_coordinate(field_stats, LONGITUDE_PATTERNS, 180)
    if latitude is not None and latitude == longitude:
        longitude = None

    return FieldMappings(
        title_path=_detect_role(field_stats, "title", language),
        description_path=_detect_role(field_stats, "description", language),
        location_name_path=_detect_role(field_stats, "location_name", language),
        timestamp_path=_detect_role(field_stats, "timestamp", language),
        latitude_path=latitude,
        longitude_path=longitude,
        location_path=_detect_role(field_stats, "location", language),
    )


def apply_overrides(detected: FieldMappings, overrides: Optional[FieldMappingOverrides]) -> FieldMappings:
    """Dataset-level manual mappings replace detected ones field by field."""
    if overrides is None:
        return detected
    merged = detected.model_dump()
    for key, value in overrides.model_dump().items():
        if value:
            merged[key] = value
    return FieldMappings(**merged)
